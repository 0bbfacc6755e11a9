"""
EC2 Service Collector
---------------------

Fetches the compute instances of the current account and region.
Documentation: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/ec2.html
"""

from functools import partial
from typing import Any, List, Optional

from awsinfo_lib.context import InventoryContext
from awsinfo_lib.fetch import Page, fetch_all
from awsinfo_lib.logging import get_logger
from awsinfo_lib.models import ComputeInstance, ResourceKind
from awsinfo_lib.updater import UpdateOutcome, update_store

logger = get_logger("ec2_service")

EC2_PAGE_SIZE = 500


class InstanceProvider:
    """describe_instances, flattened from reservations to instances."""

    operation = "ec2.describe_instances"
    page_size: Optional[int] = EC2_PAGE_SIZE

    def __init__(self, ec2_client: Any):
        self.client = ec2_client

    def list_page(self, cursor: Optional[str], page_size: Optional[int]) -> Page:
        params = {"MaxResults": page_size}
        if cursor:
            params["NextToken"] = cursor
        response = self.client.describe_instances(**params)

        instances = []
        for reservation in response.get("Reservations", []):
            instances.extend(reservation.get("Instances", []))
        return Page(instances, response.get("NextToken") or None)


def fetch_instances(ctx: InventoryContext) -> List[ComputeInstance]:
    logger.log_aws_operation("ec2", "describe_instances", ctx.config.region or "default")
    return fetch_all(
        InstanceProvider(ctx.client("ec2")),
        partial(ComputeInstance.tagged, identity=ctx.identity),
        ctx.config.api_delay_seconds,
        sleep=ctx.sleep,
    )


def update_instance_store(ctx: InventoryContext, minutes_ago: int = 0) -> UpdateOutcome:
    return update_store(ctx, ResourceKind.INSTANCE, minutes_ago, fetch_instances)
