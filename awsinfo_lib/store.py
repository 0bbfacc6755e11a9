"""
Store module for AWS Info

Persists one homogeneous list of records per resource kind:
- LocalStore: JSON file under the per-user config directory (mode 0600)
- RemoteStore: the shared copy, read over HTTP and published to S3
"""

import json
import os
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence

import httpx
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import RemoteStoreError, StoreMissingError, StoreReadError, SyncError
from .logging import get_logger
from .models import STORE_KINDS, ResourceKind, ResourceRecord, record_type

logger = get_logger()

# Stands in for the timestamp of a copy that does not exist
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)

HTTP_TIMEOUT = httpx.Timeout(20.0, connect=10.0)


def decode_records(kind: ResourceKind, payload: bytes) -> List[ResourceRecord]:
    """Decode a serialized store into records of the kind's type."""
    data = json.loads(payload)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    cls = record_type(kind)
    return [cls.from_dict(item) for item in data]


def encode_records(records: Sequence[ResourceRecord]) -> str:
    return json.dumps([record.to_dict() for record in records])


class LocalStore:
    """Store files under the config directory, one per resource kind."""

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

    def path(self, kind: ResourceKind) -> Path:
        return self.config_dir / kind.file_name

    def modified_time(self, kind: ResourceKind) -> datetime:
        """Modification time in UTC, ZERO_TIME when the file is absent."""
        try:
            mtime = self.path(kind).stat().st_mtime
        except OSError:
            return ZERO_TIME
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def load(self, kind: ResourceKind) -> List[ResourceRecord]:
        path = self.path(kind)
        try:
            payload = path.read_bytes()
        except FileNotFoundError as e:
            raise StoreMissingError(f"Can't read file {path}") from e
        except OSError as e:
            raise StoreReadError(f"Can't read file {path}: {e}") from e

        try:
            records = decode_records(kind, payload)
        except (ValueError, TypeError, AttributeError) as e:
            raise StoreReadError(f"Can't decode {path}: {e}") from e

        logger.log_store_operation("load", kind.file_name, records=len(records))
        return records

    def save(self, kind: ResourceKind, records: Sequence[ResourceRecord]) -> None:
        path = self.path(kind)
        payload = encode_records(records)
        self.config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.chmod(path, 0o600)
        logger.log_store_operation("save", kind.file_name, records=len(records))

    def purge(self) -> List[Path]:
        """Delete every store file. Returns the paths actually removed."""
        removed = []
        for kind in STORE_KINDS:
            path = self.path(kind)
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed.append(path)
            logger.log_store_operation("delete", kind.file_name)
        return removed


class RemoteStore:
    """
    Shared copy of the stores.

    Reads go through the public HTTP base URL so that operators without
    write access to the bucket can still use it; uploads use S3.
    """

    def __init__(
        self,
        url_base: str,
        bucket: str,
        http_client: Optional[httpx.Client] = None,
        s3_client: Optional[Any] = None,
    ):
        self.url_base = url_base.rstrip("/")
        self.bucket = bucket
        self.http_client = http_client or httpx.Client(
            timeout=HTTP_TIMEOUT, follow_redirects=True
        )
        self.s3_client = s3_client

    def url(self, kind: ResourceKind) -> str:
        return f"{self.url_base}/{kind.file_name}"

    def modified_time(self, kind: ResourceKind) -> datetime:
        """Last-Modified of the remote copy, ZERO_TIME when unavailable."""
        url = self.url(kind)
        try:
            response = self.http_client.head(url)
        except httpx.HTTPError as e:
            logger.debug("HEAD %s failed: %s", url, e)
            return ZERO_TIME

        if response.status_code != 200:
            logger.debug("HEAD %s returned %d", url, response.status_code)
            return ZERO_TIME

        last_modified = response.headers.get("Last-Modified")
        if not last_modified:
            return ZERO_TIME
        try:
            parsed = parsedate_to_datetime(last_modified)
        except (TypeError, ValueError):
            logger.debug("Unparseable Last-Modified for %s: %s", url, last_modified)
            return ZERO_TIME
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    def load(self, kind: ResourceKind) -> List[ResourceRecord]:
        url = self.url(kind)
        try:
            response = self.http_client.get(url)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Can't fetch {url}: {e}") from e

        if response.status_code != 200:
            raise RemoteStoreError(
                f"URL {url} returns a non-200 status ({response.status_code})"
            )

        try:
            records = decode_records(kind, response.content)
        except (ValueError, TypeError, AttributeError) as e:
            raise RemoteStoreError(f"Can't decode {url}: {e}") from e

        logger.log_store_operation("fetch", url, records=len(records))
        return records

    def upload(self, kind: ResourceKind, path: Path) -> str:
        """Upload a local store file. Returns the object's location."""
        if self.s3_client is None:
            raise SyncError("No S3 client configured for uploads")
        try:
            self.s3_client.upload_file(str(path), self.bucket, kind.file_name)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            raise SyncError(
                f"Upload of {path} to s3://{self.bucket}/{kind.file_name} failed: {e}"
            ) from e
        location = f"s3://{self.bucket}/{kind.file_name}"
        logger.log_store_operation("upload", kind.file_name, location=location)
        return location
