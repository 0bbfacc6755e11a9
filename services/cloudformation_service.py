"""
CloudFormation Service Collector
--------------------------------

Fetches the deployment stacks of the current account and region.
describe_stacks has no page size parameter; AWS decides the page length.
Documentation: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/cloudformation.html
"""

from functools import partial
from typing import Any, List, Optional

from awsinfo_lib.context import InventoryContext
from awsinfo_lib.fetch import Page, fetch_all
from awsinfo_lib.logging import get_logger
from awsinfo_lib.models import DeploymentStack, ResourceKind
from awsinfo_lib.updater import UpdateOutcome, update_store

logger = get_logger("cloudformation_service")


class StackProvider:
    operation = "cloudformation.describe_stacks"
    page_size: Optional[int] = None

    def __init__(self, cloudformation_client: Any):
        self.client = cloudformation_client

    def list_page(self, cursor: Optional[str], page_size: Optional[int]) -> Page:
        params = {"NextToken": cursor} if cursor else {}
        response = self.client.describe_stacks(**params)
        return Page(response.get("Stacks", []), response.get("NextToken") or None)


def fetch_stacks(ctx: InventoryContext) -> List[DeploymentStack]:
    logger.log_aws_operation(
        "cloudformation", "describe_stacks", ctx.config.region or "default"
    )
    return fetch_all(
        StackProvider(ctx.client("cloudformation")),
        partial(DeploymentStack.tagged, identity=ctx.identity),
        ctx.config.api_delay_seconds,
        sleep=ctx.sleep,
    )


def update_stack_store(ctx: InventoryContext, minutes_ago: int = 0) -> UpdateOutcome:
    return update_store(ctx, ResourceKind.STACK, minutes_ago, fetch_stacks)
