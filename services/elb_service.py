"""
ELB Service Collector
---------------------

Fetches the classic load balancers of the current account and region.
Documentation: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/elb.html
"""

from functools import partial
from typing import Any, List, Optional

from awsinfo_lib.context import InventoryContext
from awsinfo_lib.fetch import Page, fetch_all
from awsinfo_lib.logging import get_logger
from awsinfo_lib.models import LoadBalancer, ResourceKind
from awsinfo_lib.updater import UpdateOutcome, update_store

logger = get_logger("elb_service")

ELB_PAGE_SIZE = 400


class LoadBalancerProvider:
    operation = "elb.describe_load_balancers"
    page_size: Optional[int] = ELB_PAGE_SIZE

    def __init__(self, elb_client: Any):
        self.client = elb_client

    def list_page(self, cursor: Optional[str], page_size: Optional[int]) -> Page:
        params = {"PageSize": page_size}
        if cursor:
            params["Marker"] = cursor
        response = self.client.describe_load_balancers(**params)
        return Page(
            response.get("LoadBalancerDescriptions", []),
            response.get("NextMarker") or None,
        )


def fetch_load_balancers(ctx: InventoryContext) -> List[LoadBalancer]:
    logger.log_aws_operation("elb", "describe_load_balancers", ctx.config.region or "default")
    return fetch_all(
        LoadBalancerProvider(ctx.client("elb")),
        partial(LoadBalancer.tagged, identity=ctx.identity),
        ctx.config.api_delay_seconds,
        sleep=ctx.sleep,
    )


def update_elb_store(ctx: InventoryContext, minutes_ago: int = 0) -> UpdateOutcome:
    return update_store(ctx, ResourceKind.ELB, minutes_ago, fetch_load_balancers)
