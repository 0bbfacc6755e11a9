"""
Data models for AWS Info stores.

Each record keeps the provider's native shape in ``provider_data`` and the
account it was fetched from in ``account_id``/``account_alias``. On disk both
layers are flattened into one JSON object so that stores written by older
versions (and by other operators) stay readable.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar

ACCOUNT_ID_FIELD = "AccountId"
ACCOUNT_ALIAS_FIELD = "AccountAlias"
ZONE_ID_FIELD = "ZoneId"

TIME_FORMAT = "%Y-%m-%d %H:%M"


class ResourceKind(Enum):
    """The five resource kinds awsinfo keeps a store for."""

    INSTANCE = ("ComputeInstance", "inst.json", "ec2")
    ZONE = ("DNSZone", "zone.json", "route53")
    DNS = ("DNSRecord", "dns.json", "route53")
    ELB = ("LoadBalancer", "elb.json", "elasticloadbalancing")
    STACK = ("DeploymentStack", "stack.json", "cloudformation")

    def __init__(self, label: str, file_name: str, service: str):
        self.label = label
        self.file_name = file_name
        self.service = service

    @property
    def event_source(self) -> str:
        """CloudTrail event source namespace for this kind."""
        return f"{self.service}.amazonaws.com"


# Order used when syncing and purging stores
STORE_KINDS = (
    ResourceKind.DNS,
    ResourceKind.ZONE,
    ResourceKind.ELB,
    ResourceKind.INSTANCE,
    ResourceKind.STACK,
)


@dataclass(frozen=True)
class AccountIdentity:
    """Account every record fetched during this process is tagged with."""

    account_id: str
    account_alias: str


def json_safe(value: Any) -> Any:
    """Convert boto3 response values (datetimes included) to JSON types."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def normal_dns_name(dns_name: str) -> str:
    """Strip the superfluous 'dualstack.' prefix and trailing dot."""
    name = dns_name[len("dualstack."):] if dns_name.startswith("dualstack.") else dns_name
    return name.rstrip(".")


def format_time(value: Any) -> str:
    if not value:
        return "-"
    if isinstance(value, datetime):
        return value.strftime(TIME_FORMAT)
    try:
        return datetime.fromisoformat(str(value)).strftime(TIME_FORMAT)
    except ValueError:
        return str(value)


R = TypeVar("R", bound="ResourceRecord")


@dataclass
class ResourceRecord:
    """A provider record plus the account it belongs to."""

    provider_data: Dict[str, Any] = field(default_factory=dict)
    account_id: str = ""
    account_alias: str = ""

    kind: ClassVar[ResourceKind]
    key_field: ClassVar[str]
    provenance_fields: ClassVar[Tuple[str, ...]] = (ACCOUNT_ID_FIELD, ACCOUNT_ALIAS_FIELD)

    @classmethod
    def tagged(cls: Type[R], item: Dict[str, Any], identity: AccountIdentity) -> R:
        """Wrap a native provider item and stamp it with the account identity."""
        return cls(
            provider_data=json_safe(item),
            account_id=identity.account_id,
            account_alias=identity.account_alias,
        )

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        native = {k: v for k, v in data.items() if k not in cls.provenance_fields}
        return cls(
            provider_data=native,
            account_id=data.get(ACCOUNT_ID_FIELD) or "",
            account_alias=data.get(ACCOUNT_ALIAS_FIELD) or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.provider_data)
        data[ACCOUNT_ID_FIELD] = self.account_id
        data[ACCOUNT_ALIAS_FIELD] = self.account_alias
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self.provider_data.get(key, default)

    @property
    def natural_key(self) -> Tuple[Any, ...]:
        return (self.get(self.key_field),)


@dataclass
class ComputeInstance(ResourceRecord):
    kind: ClassVar[ResourceKind] = ResourceKind.INSTANCE
    key_field: ClassVar[str] = "InstanceId"

    @property
    def tags(self) -> Dict[str, str]:
        return {
            tag["Key"]: tag["Value"]
            for tag in self.get("Tags") or []
            if tag.get("Key") is not None and tag.get("Value") is not None
        }

    @property
    def name(self) -> str:
        return self.tags.get("Name", "-")

    @property
    def environment(self) -> str:
        return self.tags.get("Environment", "-")

    @property
    def billing_code(self) -> str:
        return self.tags.get("BillingBrandCode", "-")

    @property
    def instance_id(self) -> str:
        return self.get("InstanceId") or "-"

    @property
    def instance_type(self) -> str:
        return self.get("InstanceType") or "-"

    @property
    def state(self) -> str:
        return (self.get("State") or {}).get("Name") or "Unknown"

    @property
    def private_ip(self) -> str:
        return self.get("PrivateIpAddress") or "-"

    @property
    def launch_time(self) -> str:
        return format_time(self.get("LaunchTime"))

    @property
    def availability_zone(self) -> str:
        return (self.get("Placement") or {}).get("AvailabilityZone") or "-"

    @property
    def subnet_id(self) -> str:
        return self.get("SubnetId") or "-"

    @property
    def image_id(self) -> str:
        return self.get("ImageId") or "-"

    @property
    def key_name(self) -> str:
        return self.get("KeyName") or "-"

    @property
    def instance_profile(self) -> str:
        return (self.get("IamInstanceProfile") or {}).get("Arn") or "-"


@dataclass
class DNSZone(ResourceRecord):
    kind: ClassVar[ResourceKind] = ResourceKind.ZONE
    key_field: ClassVar[str] = "Id"

    @property
    def zone_id(self) -> str:
        return self.get("Id") or ""

    @property
    def name(self) -> str:
        return (self.get("Name") or "-").rstrip(".") or "-"

    @property
    def is_private(self) -> bool:
        return bool((self.get("Config") or {}).get("PrivateZone"))

    @property
    def zone_type(self) -> str:
        return "private" if self.is_private else "public"

    @property
    def record_count(self) -> int:
        return int(self.get("ResourceRecordSetCount") or 0)


@dataclass
class DNSRecord(ResourceRecord):
    """A Route53 record set, tagged with the hosted zone it was listed from."""

    zone_id: str = ""

    kind: ClassVar[ResourceKind] = ResourceKind.DNS
    key_field: ClassVar[str] = "Name"
    provenance_fields: ClassVar[Tuple[str, ...]] = (
        ACCOUNT_ID_FIELD,
        ACCOUNT_ALIAS_FIELD,
        ZONE_ID_FIELD,
    )

    @classmethod
    def tagged_in_zone(
        cls, item: Dict[str, Any], identity: AccountIdentity, zone_id: str
    ) -> "DNSRecord":
        record = cls.tagged(item, identity)
        record.zone_id = zone_id
        return record

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DNSRecord":
        record = super().from_dict(data)
        record.zone_id = data.get(ZONE_ID_FIELD) or ""
        return record

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data[ZONE_ID_FIELD] = self.zone_id
        return data

    @property
    def natural_key(self) -> Tuple[Any, ...]:
        return (self.zone_id, self.get("Name"), self.get("Type"))

    @property
    def name(self) -> str:
        name = (self.get("Name") or "-").rstrip(".")
        return name.replace("\\052", "*").replace("\\100", "@")

    @property
    def is_alias(self) -> bool:
        return self.get("Type") == "A" and not self.get("ResourceRecords")

    @property
    def record_type(self) -> str:
        # An A record without resource records is an AWS alias
        if self.is_alias:
            return "ALIAS"
        return self.get("Type") or "-"

    @property
    def ttl(self) -> str:
        ttl = self.get("TTL")
        return str(ttl) if ttl is not None else "-"

    @property
    def values(self) -> List[str]:
        if self.is_alias:
            target = (self.get("AliasTarget") or {}).get("DNSName")
            return [normal_dns_name(target)] if target else []
        values = [rr.get("Value", "") for rr in self.get("ResourceRecords") or []]
        if self.record_type == "CNAME":
            return [values[0].rstrip(".")] if values else []
        return values

    @property
    def alias_target(self) -> Optional[str]:
        target = (self.get("AliasTarget") or {}).get("DNSName")
        return normal_dns_name(target) if target else None


@dataclass(frozen=True)
class Listener:
    load_balancer_port: Optional[int]
    instance_port: Optional[int]
    protocol: str
    certificate_id: Optional[str]


@dataclass
class LoadBalancer(ResourceRecord):
    kind: ClassVar[ResourceKind] = ResourceKind.ELB
    key_field: ClassVar[str] = "DNSName"

    @property
    def name(self) -> str:
        return self.get("LoadBalancerName") or "-"

    @property
    def dns_name(self) -> str:
        return self.get("DNSName") or "-"

    @property
    def listeners(self) -> List[Listener]:
        listeners = []
        for description in self.get("ListenerDescriptions") or []:
            listener = description.get("Listener")
            if not listener:
                continue
            listeners.append(
                Listener(
                    load_balancer_port=listener.get("LoadBalancerPort"),
                    instance_port=listener.get("InstancePort"),
                    protocol=listener.get("Protocol") or "-",
                    certificate_id=listener.get("SSLCertificateId"),
                )
            )
        return listeners

    @property
    def certificate(self) -> str:
        """Certificate of the last HTTPS listener, '-' when there is none."""
        cert = "-"
        for listener in self.listeners:
            if listener.protocol == "HTTPS" and listener.certificate_id:
                cert = listener.certificate_id
        return cert

    @property
    def health_check(self) -> Dict[str, Any]:
        return self.get("HealthCheck") or {}

    @property
    def instance_ids(self) -> List[str]:
        return [
            inst["InstanceId"]
            for inst in self.get("Instances") or []
            if inst.get("InstanceId")
        ]


@dataclass
class DeploymentStack(ResourceRecord):
    kind: ClassVar[ResourceKind] = ResourceKind.STACK
    key_field: ClassVar[str] = "StackId"

    @property
    def stack_id(self) -> str:
        return self.get("StackId") or "-"

    @property
    def name(self) -> str:
        return self.get("StackName") or "-"

    @property
    def status(self) -> str:
        return self.get("StackStatus") or "-"

    @property
    def is_deleted(self) -> bool:
        return "delete_complete" in self.status.lower()

    @property
    def last_updated(self) -> str:
        return format_time(self.get("LastUpdatedTime"))

    @property
    def parameters(self) -> List[Tuple[str, str]]:
        return [
            (p["ParameterKey"], p["ParameterValue"])
            for p in self.get("Parameters") or []
            if p.get("ParameterKey") is not None and p.get("ParameterValue") is not None
        ]


RECORD_TYPES: Dict[ResourceKind, Type[ResourceRecord]] = {
    ResourceKind.INSTANCE: ComputeInstance,
    ResourceKind.ZONE: DNSZone,
    ResourceKind.DNS: DNSRecord,
    ResourceKind.ELB: LoadBalancer,
    ResourceKind.STACK: DeploymentStack,
}


def record_type(kind: ResourceKind) -> Type[ResourceRecord]:
    return RECORD_TYPES[kind]
