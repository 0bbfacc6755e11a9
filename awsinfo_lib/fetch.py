"""
Fetch module for AWS Info

The paginated fetch protocol shared by every collector:
- request one bounded page at a time, following the provider's cursor
- throttling errors are retried forever after a fixed delay
- any other provider error is retried at most MAX_TRANSIENT_ERRORS times,
  after which the whole fetch is aborted
- every item is tagged on the way in (account identity, zone, ...)
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import FetchAbortedError
from .logging import get_logger

logger = get_logger()

# Substrings (lowercase) that mark an error as rate limiting or quota exceedance
THROTTLE_TOKENS = ("throttl", "exceed")

MAX_TRANSIENT_ERRORS = 3

PROVIDER_ERRORS = (BotoCoreError, ClientError)

T = TypeVar("T")


@dataclass
class Page:
    """One page of native provider items and the cursor of the next one."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[Any] = None


class ResourceProvider(Protocol):
    """List endpoint of one resource kind."""

    operation: str
    page_size: Optional[int]

    def list_page(self, cursor: Optional[Any], page_size: Optional[int]) -> Page:
        ...


def is_throttling(error: BaseException) -> bool:
    message = str(error).lower()
    return any(token in message for token in THROTTLE_TOKENS)


def fetch_all(
    provider: ResourceProvider,
    tag: Callable[[Dict[str, Any]], T],
    delay_seconds: float,
    max_errors: int = MAX_TRANSIENT_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
) -> List[T]:
    """
    Fetch every page from ``provider`` and return the tagged items.

    Raises FetchAbortedError once more than ``max_errors`` non-throttling
    errors have occurred during this fetch.
    """
    cursor: Optional[Any] = None
    errcount = 0
    pages = 0
    results: List[T] = []

    while True:
        try:
            page = provider.list_page(cursor, provider.page_size)
        except PROVIDER_ERRORS as e:
            if is_throttling(e):
                logger.info("AWS throttling. Sleeping %s seconds...", delay_seconds)
                sleep(delay_seconds)
                continue
            if errcount < max_errors:
                errcount += 1
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    provider.operation,
                    errcount,
                    max_errors,
                    e,
                )
                continue
            raise FetchAbortedError(provider.operation, errcount + 1, e) from e

        pages += 1
        results.extend(tag(item) for item in page.items)

        if page.next_cursor is None:
            break
        cursor = page.next_cursor

    logger.debug(
        "%s returned %d items in %d pages", provider.operation, len(results), pages
    )
    return results
