"""
CloudTrail Service Collector
----------------------------

Audit log lookups used to decide whether a windowed update has anything
to refresh. Events are filtered server-side by event source.
Documentation: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/cloudtrail.html
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from awsinfo_lib.fetch import Page, fetch_all
from awsinfo_lib.logging import get_logger
from awsinfo_lib.planner import AuditEvent

logger = get_logger("cloudtrail_service")

CLOUDTRAIL_PAGE_SIZE = 50


def to_audit_event(item: Dict[str, Any]) -> AuditEvent:
    return AuditEvent(
        name=item.get("EventName") or "",
        time=item.get("EventTime"),
        payload=item.get("CloudTrailEvent") or "",
    )


class EventProvider:
    operation = "cloudtrail.lookup_events"
    page_size: Optional[int] = CLOUDTRAIL_PAGE_SIZE

    def __init__(self, cloudtrail_client: Any, source: str, since: datetime, until: datetime):
        self.client = cloudtrail_client
        self.source = source
        self.since = since
        self.until = until

    def list_page(self, cursor: Optional[str], page_size: Optional[int]) -> Page:
        params: Dict[str, Any] = {
            "LookupAttributes": [
                {"AttributeKey": "EventSource", "AttributeValue": self.source}
            ],
            "StartTime": self.since,
            "EndTime": self.until,
            "MaxResults": page_size,
        }
        if cursor:
            params["NextToken"] = cursor
        response = self.client.lookup_events(**params)
        return Page(response.get("Events", []), response.get("NextToken") or None)


class CloudTrailAuditLog:
    """AuditLogProvider backed by CloudTrail lookup_events."""

    def __init__(
        self,
        cloudtrail_client: Any,
        delay_seconds: float,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = cloudtrail_client
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    def lookup_events(
        self, source: str, since: datetime, until: datetime
    ) -> List[AuditEvent]:
        logger.log_aws_operation("cloudtrail", "lookup_events", "default", source=source)
        return fetch_all(
            EventProvider(self.client, source, since, until),
            to_audit_event,
            self.delay_seconds,
            sleep=self.sleep,
        )
