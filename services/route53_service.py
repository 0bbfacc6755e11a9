"""
Route53 Service Collector
-------------------------

Fetches hosted zones and the record sets inside them. Route53 is a global
service and throttles aggressively, so its collectors back off with the
dedicated r53 delay.
Documentation: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/route53.html
"""

from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from awsinfo_lib.context import InventoryContext
from awsinfo_lib.fetch import Page, fetch_all
from awsinfo_lib.logging import get_logger
from awsinfo_lib.models import DNSRecord, DNSZone, ResourceKind
from awsinfo_lib.updater import UpdateOutcome, update_dns_store, update_store

logger = get_logger("route53_service")

ROUTE53_PAGE_SIZE = 100


class ZoneProvider:
    operation = "route53.list_hosted_zones"
    page_size: Optional[int] = ROUTE53_PAGE_SIZE

    def __init__(self, route53_client: Any):
        self.client = route53_client

    def list_page(self, cursor: Optional[str], page_size: Optional[int]) -> Page:
        params = {"MaxItems": str(page_size)}
        if cursor:
            params["Marker"] = cursor
        response = self.client.list_hosted_zones(**params)
        next_marker = response.get("NextMarker") if response.get("IsTruncated") else None
        return Page(response.get("HostedZones", []), next_marker or None)


class RecordSetProvider:
    """
    list_resource_record_sets for one zone.

    The cursor is the (name, type, identifier) triple Route53 returns for
    the next record when the listing is truncated.
    """

    operation = "route53.list_resource_record_sets"
    page_size: Optional[int] = ROUTE53_PAGE_SIZE

    def __init__(self, route53_client: Any, zone_id: str):
        self.client = route53_client
        self.zone_id = zone_id

    def list_page(
        self, cursor: Optional[Dict[str, str]], page_size: Optional[int]
    ) -> Page:
        params: Dict[str, Any] = {"HostedZoneId": self.zone_id, "MaxItems": str(page_size)}
        if cursor:
            params.update(cursor)
        response = self.client.list_resource_record_sets(**params)

        next_cursor = None
        if response.get("IsTruncated"):
            next_cursor = {"StartRecordName": response["NextRecordName"]}
            if response.get("NextRecordType"):
                next_cursor["StartRecordType"] = response["NextRecordType"]
            if response.get("NextRecordIdentifier"):
                next_cursor["StartRecordIdentifier"] = response["NextRecordIdentifier"]
        return Page(response.get("ResourceRecordSets", []), next_cursor)


def fetch_zones(ctx: InventoryContext) -> List[DNSZone]:
    logger.log_aws_operation("route53", "list_hosted_zones", "global")
    return fetch_all(
        ZoneProvider(ctx.client("route53")),
        partial(DNSZone.tagged, identity=ctx.identity),
        ctx.config.api_delay_seconds,
        sleep=ctx.sleep,
    )


def fetch_zone_records(ctx: InventoryContext, zone: DNSZone) -> List[DNSRecord]:
    logger.log_aws_operation(
        "route53", "list_resource_record_sets", "global", zone=zone.zone_id
    )
    return fetch_all(
        RecordSetProvider(ctx.client("route53"), zone.zone_id),
        partial(DNSRecord.tagged_in_zone, identity=ctx.identity, zone_id=zone.zone_id),
        ctx.config.api_delay_seconds,
        sleep=ctx.sleep,
    )


def update_zone_store(ctx: InventoryContext, minutes_ago: int = 0) -> UpdateOutcome:
    return update_store(ctx, ResourceKind.ZONE, minutes_ago, fetch_zones)


def update_record_store(
    ctx: InventoryContext, minutes_ago: int = 0, zone_names: Sequence[str] = ()
) -> UpdateOutcome:
    return update_dns_store(ctx, minutes_ago, zone_names, fetch_zone_records)
