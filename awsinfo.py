"""
AWS Info
--------

Keeps a local, multi-account inventory of AWS resources (instances, hosted
zones, DNS records, classic load balancers and CloudFormation stacks) and
publishes it to a shared bucket.
"""

from typing import List, Optional, Sequence

import boto3
import pyfiglet
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    ProfileNotFound,
    TokenRetrievalError,
)
from rich.console import Console

from awsinfo_lib.config import InventoryConfig
from awsinfo_lib.context import InventoryContext, get_client_with_config
from awsinfo_lib.exceptions import ConfigError, IdentityError
from awsinfo_lib.freshness import FreshnessArbiter
from awsinfo_lib.logging import get_logger, get_output_console
from awsinfo_lib.models import AccountIdentity
from awsinfo_lib.store import LocalStore, RemoteStore
from awsinfo_lib.updater import UpdateOutcome
from services import (
    CloudTrailAuditLog,
    update_elb_store,
    update_instance_store,
    update_record_store,
    update_stack_store,
    update_zone_store,
)

logger = get_logger()

console: Console = get_output_console()


def get_session(profile_name: Optional[str] = None) -> boto3.Session:
    """Get AWS session for the given profile (default credential chain otherwise)."""
    try:
        return boto3.Session(profile_name=profile_name)
    except ProfileNotFound as e:
        raise ConfigError(f"AWS profile '{profile_name}' not found") from e


def resolve_region(config: InventoryConfig, session: boto3.Session) -> InventoryConfig:
    """
    Pin the region: environment variables win (already applied by
    load_config), then the region of the AWS config file.
    """
    if config.region:
        return config
    if session.region_name:
        return config.with_region(session.region_name)
    raise ConfigError(
        "No AWS region configured. Set AWS_REGION or a region in ~/.aws/config."
    )


def resolve_identity(session: boto3.Session, region: Optional[str] = None) -> AccountIdentity:
    """
    Look up the account id (STS) and alias (IAM) once per process.

    An account without an alias is identified by its id.
    """
    try:
        caller = get_client_with_config(session, "sts", region).get_caller_identity()
    except NoCredentialsError as e:
        raise IdentityError(
            "No AWS credentials found. Configure credentials or set AWS_PROFILE."
        ) from e
    except TokenRetrievalError as e:
        raise IdentityError(
            "Failed to retrieve AWS credentials. Check your SSO session."
        ) from e
    except (BotoCoreError, ClientError) as e:
        raise IdentityError(f"Unable to get AWS account id: {e}") from e

    account_id = caller.get("Account")
    if not account_id:
        raise IdentityError("Unable to get AWS account id")

    try:
        aliases = get_client_with_config(session, "iam", region).list_account_aliases()
    except (BotoCoreError, ClientError) as e:
        raise IdentityError(f"Unable to get AWS account alias: {e}") from e

    alias_list = aliases.get("AccountAliases") or []
    if alias_list:
        alias = alias_list[0]
    else:
        logger.warning("Account %s has no alias, using the account id", account_id)
        alias = account_id

    logger.debug("Resolved identity: account=%s alias=%s", account_id, alias)
    return AccountIdentity(account_id=account_id, account_alias=alias)


def build_stores(
    config: InventoryConfig, session: Optional[boto3.Session] = None
) -> FreshnessArbiter:
    """Local and remote stores for the config; uploads need a session."""
    s3_client = get_client_with_config(session, "s3", config.region) if session else None
    remote = RemoteStore(config.s3_url_base, config.s3_bucket, s3_client=s3_client)
    return FreshnessArbiter(LocalStore(config.config_dir), remote)


def build_context(config: InventoryConfig) -> InventoryContext:
    """Resolve session, region and identity before any fetch."""
    session = get_session(config.profile)
    config = resolve_region(config, session)
    identity = resolve_identity(session, config.region)
    arbiter = build_stores(config, session)
    audit = CloudTrailAuditLog(
        get_client_with_config(session, "cloudtrail", config.region),
        config.api_delay_seconds,
    )
    return InventoryContext(
        config=config,
        session=session,
        identity=identity,
        local=arbiter.local,
        arbiter=arbiter,
        audit=audit,
    )


def update_all_stores(
    ctx: InventoryContext, minutes_ago: int = 0, zone_names: Sequence[str] = ()
) -> List[UpdateOutcome]:
    """
    Update every store for the current account.

    A zone list only narrows the DNS record refresh; the other stores are
    fully refreshed in that case. DNS goes last since it reads the zone store.
    """
    logger.info(
        "Updating stores for account %s (%s) in %s",
        ctx.identity.account_alias,
        ctx.account_id,
        ctx.config.region,
    )
    outcomes = [
        update_instance_store(ctx, minutes_ago),
        update_zone_store(ctx, minutes_ago),
        update_elb_store(ctx, minutes_ago),
        update_stack_store(ctx, minutes_ago),
        update_record_store(ctx, minutes_ago, zone_names),
    ]
    skipped = [o.kind.label for o in outcomes if not o.updated]
    if skipped:
        logger.debug("Stores left untouched: %s", ", ".join(skipped))
    return outcomes


def display_banner() -> str:
    """Display the ASCII banner."""
    try:
        banner = pyfiglet.figlet_format("awsinfo", font="slant")
        output = f"[bold cyan]{banner}[/bold cyan]"
    except (pyfiglet.FontNotFound, pyfiglet.FigletError, OSError):
        output = "[bold cyan]AWSINFO[/bold cyan]"

    output += "\n[dim]AWS resource inventory[/dim]\n"

    console.print(output)
    return output
