"""
AWS Services Package
--------------------

This package contains one collector module per AWS service.
Each module has a provider per list endpoint, a fetch function and the
update function for the store it feeds.
"""

from .cloudformation_service import fetch_stacks, update_stack_store
from .cloudtrail_service import CloudTrailAuditLog
from .ec2_service import fetch_instances, update_instance_store
from .elb_service import fetch_load_balancers, update_elb_store
from .route53_service import (
    fetch_zone_records,
    fetch_zones,
    update_record_store,
    update_zone_store,
)

__all__ = [
    "fetch_instances",
    "update_instance_store",
    "fetch_zones",
    "update_zone_store",
    "fetch_zone_records",
    "update_record_store",
    "fetch_load_balancers",
    "update_elb_store",
    "fetch_stacks",
    "update_stack_store",
    "CloudTrailAuditLog",
]
