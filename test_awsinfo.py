#!/usr/bin/env python3
"""
Test Suite for AWS Info
-----------------------

Covers the inventory engine (stores, freshness, fetch protocol, planning,
reconciliation, sync), the service collectors and the CLI. No AWS account
or network access is needed: boto3 clients, HTTP and DNS are mocked.
"""

import io
import json
import os
import stat
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from email.utils import format_datetime
from functools import partial
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, call, patch

import dns.resolver
import httpx
from botocore.exceptions import ClientError, NoCredentialsError
from rich.console import Console
from typer.testing import CliRunner

# Add the script's directory to the Python path
script_dir = Path(__file__).parent.absolute()
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from awsinfo import resolve_identity, resolve_region, update_all_stores
from awsinfo_lib.breakdown import breakdown, follow_cname_chain, render_breakdown
from awsinfo_lib.config import (
    InventoryConfig,
    create_skeleton_config,
    load_config,
    load_config_file,
    region_from_env,
)
from awsinfo_lib.context import InventoryContext
from awsinfo_lib.exceptions import (
    ConfigError,
    FetchAbortedError,
    IdentityError,
    InventoryError,
    RemoteStoreError,
    ResolutionError,
    StoreMissingError,
    StoreReadError,
    SyncError,
)
from awsinfo_lib.fetch import Page, fetch_all, is_throttling
from awsinfo_lib.freshness import FreshnessArbiter
from awsinfo_lib.models import (
    AccountIdentity,
    ComputeInstance,
    DeploymentStack,
    DNSRecord,
    DNSZone,
    LoadBalancer,
    ResourceKind,
    normal_dns_name,
)
from awsinfo_lib.outputs import dns_rows, elb_cert_rows, instance_rows, stack_rows, zone_rows
from awsinfo_lib.planner import (
    AuditEvent,
    RefreshMode,
    extract_zone_id,
    parse_refresh_scope,
    plan_dns_refresh,
    plan_refresh,
)
from awsinfo_lib.reconcile import reconcile
from awsinfo_lib.store import ZERO_TIME, LocalStore, RemoteStore
from awsinfo_lib.sync import SyncAction, sync_to_remote
from awsinfo_lib.updater import update_dns_store, update_store
from cli import app
from services.cloudtrail_service import CloudTrailAuditLog
from services.ec2_service import InstanceProvider, fetch_instances
from services.elb_service import LoadBalancerProvider
from services.route53_service import RecordSetProvider, ZoneProvider, fetch_zones

IDENTITY = AccountIdentity(account_id="111", account_alias="prod")
OTHER = AccountIdentity(account_id="222", account_alias="staging")

BASE_TIME = 1_600_000_000


def http_date(timestamp):
    return format_datetime(datetime.fromtimestamp(timestamp, timezone.utc), usegmt=True)


def remote_store(handler, s3_client=None):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RemoteStore("https://example.test/awsinfo", "awsinfo-bucket", client, s3_client)


def absent_remote(s3_client=None):
    return remote_store(lambda request: httpx.Response(404), s3_client)


def newer_unreadable_remote(timestamp, response):
    """Remote copy that claims to be newer but cannot be fetched or decoded."""

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(200, headers={"Last-Modified": http_date(timestamp)})
        return response

    return remote_store(handler)


def client_error(code, message, operation="ListThings"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeAudit:
    def __init__(self, events):
        self.events = events
        self.sources = []

    def lookup_events(self, source, since, until):
        self.sources.append(source)
        return list(self.events)


class FakeProvider:
    operation = "fake.list_things"
    page_size = 2

    def __init__(self, responses):
        self.responses = list(responses)
        self.cursors = []

    def list_page(self, cursor, page_size):
        self.cursors.append(cursor)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def zone(zone_id, name, account=IDENTITY, count=2):
    return DNSZone.tagged(
        {"Id": zone_id, "Name": name, "ResourceRecordSetCount": count}, account
    )


def record(name, zone_id, account=IDENTITY, rtype="A", values=("10.0.0.1",)):
    item = {
        "Name": name,
        "Type": rtype,
        "TTL": 300,
        "ResourceRecords": [{"Value": v} for v in values],
    }
    return DNSRecord.tagged_in_zone(item, account, zone_id)


class StoreTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config_dir = Path(self.tmp.name)
        self.local = LocalStore(self.config_dir)

    def tearDown(self):
        self.tmp.cleanup()

    def set_mtime(self, kind, timestamp):
        os.utime(self.local.path(kind), (timestamp, timestamp))

    def context(self, audit=None, remote=None):
        remote = remote or absent_remote()
        return InventoryContext(
            config=InventoryConfig(config_dir=self.config_dir, region="us-east-1"),
            session=MagicMock(),
            identity=IDENTITY,
            local=self.local,
            arbiter=FreshnessArbiter(self.local, remote),
            audit=audit,
            sleep=Mock(),
        )


class TestModels(unittest.TestCase):
    def test_provenance_is_flattened_and_split(self):
        inst = ComputeInstance.tagged({"InstanceId": "i-1"}, IDENTITY)
        data = inst.to_dict()
        self.assertEqual(data, {"InstanceId": "i-1", "AccountId": "111", "AccountAlias": "prod"})

        restored = ComputeInstance.from_dict(data)
        self.assertEqual(restored.provider_data, {"InstanceId": "i-1"})
        self.assertEqual(restored.account_id, "111")
        self.assertEqual(restored.account_alias, "prod")

    def test_datetimes_become_json_safe(self):
        launched = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        inst = ComputeInstance.tagged({"InstanceId": "i-1", "LaunchTime": launched}, IDENTITY)
        json.dumps(inst.to_dict())
        self.assertEqual(inst.launch_time, "2024-05-01 12:30")

    def test_instance_tags(self):
        inst = ComputeInstance.tagged(
            {
                "InstanceId": "i-1",
                "State": {"Name": "running"},
                "Tags": [
                    {"Key": "Name", "Value": "web 01"},
                    {"Key": "Environment", "Value": "prod"},
                    {"Key": "BillingBrandCode", "Value": "B42"},
                ],
            },
            IDENTITY,
        )
        self.assertEqual(inst.name, "web 01")
        self.assertEqual(inst.environment, "prod")
        self.assertEqual(inst.billing_code, "B42")
        self.assertEqual(inst.state, "running")
        self.assertEqual(inst.private_ip, "-")

    def test_dns_record_alias_and_escapes(self):
        alias = DNSRecord.tagged_in_zone(
            {
                "Name": "\\052.example.com.",
                "Type": "A",
                "AliasTarget": {"DNSName": "dualstack.lb-1.elb.amazonaws.com."},
            },
            IDENTITY,
            "/hostedzone/Z1",
        )
        self.assertEqual(alias.name, "*.example.com")
        self.assertEqual(alias.record_type, "ALIAS")
        self.assertEqual(alias.values, ["lb-1.elb.amazonaws.com"])
        self.assertEqual(alias.to_dict()["ZoneId"], "/hostedzone/Z1")

        cname = record("www.example.com.", "/hostedzone/Z1", rtype="CNAME", values=("host.example.com.",))
        self.assertEqual(cname.record_type, "CNAME")
        self.assertEqual(cname.values, ["host.example.com"])

    def test_load_balancer_details(self):
        lb = LoadBalancer.tagged(
            {
                "LoadBalancerName": "web",
                "DNSName": "web-1.elb.amazonaws.com",
                "ListenerDescriptions": [
                    {"Listener": {"LoadBalancerPort": 80, "InstancePort": 8080, "Protocol": "HTTP"}},
                    {
                        "Listener": {
                            "LoadBalancerPort": 443,
                            "InstancePort": 8080,
                            "Protocol": "HTTPS",
                            "SSLCertificateId": "arn:aws:acm:cert/1",
                        }
                    },
                ],
                "Instances": [{"InstanceId": "i-1"}, {"InstanceId": "i-2"}],
            },
            IDENTITY,
        )
        self.assertEqual(len(lb.listeners), 2)
        self.assertEqual(lb.certificate, "arn:aws:acm:cert/1")
        self.assertEqual(lb.instance_ids, ["i-1", "i-2"])

    def test_deleted_stack(self):
        stack = DeploymentStack.tagged({"StackName": "old", "StackStatus": "DELETE_COMPLETE"}, IDENTITY)
        self.assertTrue(stack.is_deleted)

    def test_normal_dns_name(self):
        self.assertEqual(normal_dns_name("dualstack.lb.amazonaws.com."), "lb.amazonaws.com")
        self.assertEqual(normal_dns_name("www.example.com"), "www.example.com")


class TestLocalStore(StoreTestCase):
    def test_save_and_load(self):
        self.local.save(ResourceKind.INSTANCE, [ComputeInstance.tagged({"InstanceId": "i-1"}, IDENTITY)])
        path = self.local.path(ResourceKind.INSTANCE)

        self.assertEqual(path.name, "inst.json")
        self.assertEqual(stat.S_IMODE(path.stat().st_mode), 0o600)

        loaded = self.local.load(ResourceKind.INSTANCE)
        self.assertEqual(len(loaded), 1)
        self.assertIsInstance(loaded[0], ComputeInstance)
        self.assertEqual(loaded[0].instance_id, "i-1")

    def test_missing_store(self):
        with self.assertRaises(StoreMissingError):
            self.local.load(ResourceKind.ZONE)
        self.assertEqual(self.local.modified_time(ResourceKind.ZONE), ZERO_TIME)

    def test_corrupt_store(self):
        self.local.path(ResourceKind.ELB).write_text("{not json")
        with self.assertRaises(StoreReadError) as cm:
            self.local.load(ResourceKind.ELB)
        self.assertNotIsInstance(cm.exception, StoreMissingError)

    def test_null_store_is_empty(self):
        self.local.path(ResourceKind.STACK).write_text("null")
        self.assertEqual(self.local.load(ResourceKind.STACK), [])

    def test_purge(self):
        self.local.save(ResourceKind.DNS, [])
        self.local.save(ResourceKind.STACK, [])
        removed = self.local.purge()
        self.assertEqual({p.name for p in removed}, {"dns.json", "stack.json"})
        self.assertFalse(self.local.path(ResourceKind.DNS).exists())


class TestRemoteStore(unittest.TestCase):
    def test_modified_time_from_last_modified(self):
        remote = remote_store(
            lambda request: httpx.Response(200, headers={"Last-Modified": http_date(BASE_TIME)})
        )
        self.assertEqual(
            remote.modified_time(ResourceKind.DNS),
            datetime.fromtimestamp(BASE_TIME, timezone.utc),
        )

    def test_absent_remote_is_zero_time(self):
        self.assertEqual(absent_remote().modified_time(ResourceKind.DNS), ZERO_TIME)

    def test_missing_last_modified_is_zero_time(self):
        remote = remote_store(lambda request: httpx.Response(200))
        self.assertEqual(remote.modified_time(ResourceKind.ZONE), ZERO_TIME)

    def test_load_decodes_records(self):
        payload = json.dumps([{"Id": "/hostedzone/Z1", "Name": "a.com.", "AccountId": "222"}])
        remote = remote_store(lambda request: httpx.Response(200, content=payload.encode()))
        zones = remote.load(ResourceKind.ZONE)
        self.assertEqual(zones[0].account_id, "222")
        self.assertEqual(zones[0].name, "a.com")

    def test_load_failure(self):
        with self.assertRaises(RemoteStoreError):
            absent_remote().load(ResourceKind.ZONE)

    def test_upload(self):
        s3 = Mock()
        location = absent_remote(s3).upload(ResourceKind.ELB, Path("/tmp/elb.json"))
        s3.upload_file.assert_called_once_with("/tmp/elb.json", "awsinfo-bucket", "elb.json")
        self.assertEqual(location, "s3://awsinfo-bucket/elb.json")

    def test_upload_failure(self):
        s3 = Mock()
        s3.upload_file.side_effect = client_error("AccessDenied", "denied", "PutObject")
        with self.assertRaises(SyncError):
            absent_remote(s3).upload(ResourceKind.ELB, Path("/tmp/elb.json"))


class TestFreshnessArbiter(StoreTestCase):
    def remote(self, timestamp, records):
        payload = json.dumps(records).encode()

        def handler(request):
            if request.method == "HEAD":
                return httpx.Response(200, headers={"Last-Modified": http_date(timestamp)})
            return httpx.Response(200, content=payload)

        return remote_store(handler)

    def save_local(self, timestamp):
        self.local.save(ResourceKind.ELB, [LoadBalancer.tagged({"DNSName": "local"}, IDENTITY)])
        self.set_mtime(ResourceKind.ELB, timestamp)

    def test_remote_newer_wins_and_refreshes_local(self):
        self.save_local(BASE_TIME)
        arbiter = FreshnessArbiter(
            self.local, self.remote(BASE_TIME + 60, [{"DNSName": "remote", "AccountId": "222"}])
        )
        records = arbiter.load(ResourceKind.ELB)
        self.assertEqual(records[0].dns_name, "remote")
        self.assertEqual(self.local.load(ResourceKind.ELB)[0].dns_name, "remote")

    def test_tie_selects_local(self):
        self.save_local(BASE_TIME)
        arbiter = FreshnessArbiter(self.local, self.remote(BASE_TIME, [{"DNSName": "remote"}]))
        self.assertFalse(arbiter.is_remote_newer(ResourceKind.ELB))
        self.assertEqual(arbiter.load(ResourceKind.ELB)[0].dns_name, "local")

    def test_local_newer_wins(self):
        self.save_local(BASE_TIME + 60)
        arbiter = FreshnessArbiter(self.local, self.remote(BASE_TIME, [{"DNSName": "remote"}]))
        self.assertEqual(arbiter.load(ResourceKind.ELB)[0].dns_name, "local")

    def test_remote_only(self):
        arbiter = FreshnessArbiter(self.local, self.remote(BASE_TIME, [{"DNSName": "remote"}]))
        self.assertEqual(arbiter.load(ResourceKind.ELB)[0].dns_name, "remote")

    def test_neither_exists(self):
        arbiter = FreshnessArbiter(self.local, absent_remote())
        with self.assertRaises(StoreMissingError):
            arbiter.load(ResourceKind.ELB)

    def test_undecodable_newer_remote_keeps_local_copy(self):
        self.save_local(BASE_TIME)
        path = self.local.path(ResourceKind.ELB)
        content, mtime = path.read_bytes(), path.stat().st_mtime_ns

        remote = newer_unreadable_remote(BASE_TIME + 60, httpx.Response(200, content=b"{broken"))
        arbiter = FreshnessArbiter(self.local, remote)
        self.assertTrue(arbiter.is_remote_newer(ResourceKind.ELB))
        with self.assertRaises(RemoteStoreError):
            arbiter.load(ResourceKind.ELB)

        self.assertEqual(path.read_bytes(), content)
        self.assertEqual(path.stat().st_mtime_ns, mtime)


class TestFetchProtocol(unittest.TestCase):
    def setUp(self):
        self.tag = partial(ComputeInstance.tagged, identity=IDENTITY)
        self.sleep = Mock()

    def test_pagination_completeness(self):
        provider = FakeProvider(
            [
                Page([{"InstanceId": "i-1"}, {"InstanceId": "i-2"}], "c1"),
                Page([{"InstanceId": "i-3"}, {"InstanceId": "i-4"}], "c2"),
                Page([{"InstanceId": "i-5"}], None),
            ]
        )
        results = fetch_all(provider, self.tag, 1, sleep=self.sleep)

        self.assertEqual([r.instance_id for r in results], ["i-1", "i-2", "i-3", "i-4", "i-5"])
        self.assertTrue(all(r.account_id == "111" and r.account_alias == "prod" for r in results))
        self.assertEqual(provider.cursors, [None, "c1", "c2"])

    def test_throttling_is_retried_with_delay(self):
        throttled = client_error("Throttling", "Rate exceeded")
        provider = FakeProvider([throttled] * 6 + [Page([{"InstanceId": "i-1"}], None)])
        results = fetch_all(provider, self.tag, 7, sleep=self.sleep)

        self.assertEqual(len(results), 1)
        self.assertEqual(self.sleep.call_args_list, [call(7)] * 6)

    def test_three_errors_then_success(self):
        error = client_error("InternalError", "Internal failure")
        provider = FakeProvider([error] * 3 + [Page([{"InstanceId": "i-1"}], None)])
        results = fetch_all(provider, self.tag, 1, sleep=self.sleep)
        self.assertEqual(len(results), 1)
        self.sleep.assert_not_called()

    def test_four_errors_abort(self):
        error = client_error("InternalError", "Internal failure")
        provider = FakeProvider([error] * 4 + [Page([{"InstanceId": "i-1"}], None)])
        with self.assertRaises(FetchAbortedError) as cm:
            fetch_all(provider, self.tag, 1, sleep=self.sleep)
        self.assertEqual(cm.exception.attempts, 4)
        self.assertEqual(len(provider.cursors), 4)
        self.assertIsInstance(cm.exception, InventoryError)

    def test_is_throttling(self):
        self.assertTrue(is_throttling(client_error("Throttling", "Rate exceeded")))
        self.assertTrue(is_throttling(client_error("RequestLimitExceeded", "Request limit exceeded")))
        self.assertFalse(is_throttling(client_error("AccessDenied", "Not authorized")))


class TestPlanner(unittest.TestCase):
    def test_parse_refresh_scope(self):
        self.assertEqual(parse_refresh_scope(None), (0, []))
        self.assertEqual(parse_refresh_scope("60"), (60, []))
        self.assertEqual(parse_refresh_scope("a.com, B.io"), (0, ["a.com", "b.io"]))
        for bad in ("0", "10081", "-5"):
            with self.assertRaises(ConfigError):
                parse_refresh_scope(bad)

    def test_extract_zone_id_from_request_parameters(self):
        payload = json.dumps({"eventName": "ChangeResourceRecordSets", "requestParameters": {"hostedZoneId": "Z1"}})
        self.assertEqual(extract_zone_id(payload), "/hostedzone/Z1")

    def test_extract_zone_id_from_response_elements(self):
        payload = json.dumps({"responseElements": {"hostedZone": {"id": "/hostedzone/Z2"}}})
        self.assertEqual(extract_zone_id(payload), "/hostedzone/Z2")

    def test_extract_zone_id_undecodable(self):
        self.assertIsNone(extract_zone_id("not json"))
        self.assertIsNone(extract_zone_id(json.dumps({"requestParameters": None})))
        self.assertIsNone(extract_zone_id(json.dumps(["a"])))

    def test_full_refresh_needs_no_audit(self):
        plan = plan_refresh(ResourceKind.INSTANCE, 0, None)
        self.assertTrue(plan.proceed)
        self.assertIs(plan.mode, RefreshMode.FULL)

    def test_windowed_refresh_ignores_read_only_events(self):
        audit = FakeAudit([AuditEvent("DescribeInstances"), AuditEvent("ListTagsForResource")])
        plan = plan_refresh(ResourceKind.INSTANCE, 30, audit)
        self.assertFalse(plan.proceed)
        self.assertEqual(audit.sources, ["ec2.amazonaws.com"])

    def test_windowed_refresh_with_mutations(self):
        audit = FakeAudit([AuditEvent("RunInstances"), AuditEvent("DescribeInstances")])
        plan = plan_refresh(ResourceKind.INSTANCE, 30, audit)
        self.assertTrue(plan.proceed)
        self.assertEqual(plan.change_count, 1)

    def test_windowed_dns_plan_targets_touched_zones(self):
        zones = [zone("/hostedzone/Z1", "a.com."), zone("/hostedzone/Z2", "b.com.")]
        audit = FakeAudit(
            [
                AuditEvent("ChangeResourceRecordSets", payload=json.dumps({"requestParameters": {"hostedZoneId": "Z1"}})),
                AuditEvent("ChangeResourceRecordSets", payload="garbage"),
                AuditEvent("ListHostedZones"),
            ]
        )
        plan = plan_dns_refresh(zones, 15, [], audit)
        self.assertTrue(plan.proceed)
        self.assertEqual([z.zone_id for z in plan.target_zones], ["/hostedzone/Z1"])
        self.assertEqual(plan.zone_ids, {"/hostedzone/z1"})
        self.assertEqual(audit.sources, ["route53.amazonaws.com"])

    def test_explicit_dns_plan(self):
        zones = [zone("/hostedzone/Z1", "a.com."), zone("/hostedzone/Z2", "b.com.")]
        plan = plan_dns_refresh(zones, 0, ["A.com"], None)
        self.assertIs(plan.mode, RefreshMode.EXPLICIT)
        self.assertEqual(plan.zone_ids, {"/hostedzone/z1"})

    def test_window_and_zones_are_exclusive(self):
        with self.assertRaises(ConfigError):
            plan_dns_refresh([], 10, ["a.com"], FakeAudit([]))


class TestReconcile(StoreTestCase):
    def test_load_balancer_example(self):
        self.local.save(
            ResourceKind.ELB,
            [
                LoadBalancer.from_dict({"DNSName": "lb1", "AccountId": "111"}),
                LoadBalancer.from_dict({"DNSName": "lb2", "AccountId": "222"}),
            ],
        )
        fresh = [LoadBalancer.tagged({"DNSName": "lb3"}, IDENTITY)]
        result = reconcile(self.local, ResourceKind.ELB, "111", fresh)

        stored = [(r.get("DNSName"), r.account_id) for r in self.local.load(ResourceKind.ELB)]
        self.assertEqual(stored, [("lb2", "222"), ("lb3", "111")])
        self.assertEqual((result.kept, result.replaced, result.added), (1, 1, 1))
        self.assertEqual((result.changes.added, result.changes.removed), (1, 1))

    def test_idempotence(self):
        self.local.save(ResourceKind.INSTANCE, [ComputeInstance.tagged({"InstanceId": "i-9"}, OTHER)])
        fresh = [ComputeInstance.tagged({"InstanceId": f"i-{n}"}, IDENTITY) for n in range(3)]

        reconcile(self.local, ResourceKind.INSTANCE, "111", fresh)
        first = self.local.path(ResourceKind.INSTANCE).read_bytes()
        result = reconcile(self.local, ResourceKind.INSTANCE, "111", fresh)
        second = self.local.path(ResourceKind.INSTANCE).read_bytes()

        self.assertEqual(first, second)
        self.assertEqual(len(result.records), 4)
        self.assertFalse(result.changes)

    def test_account_isolation(self):
        others = [
            ComputeInstance.tagged({"InstanceId": "i-a", "InstanceType": "t3.micro"}, OTHER),
            ComputeInstance.tagged({"InstanceId": "i-b"}, OTHER),
        ]
        self.local.save(ResourceKind.INSTANCE, others + [ComputeInstance.tagged({"InstanceId": "i-1"}, IDENTITY)])

        reconcile(self.local, ResourceKind.INSTANCE, "111", [])

        stored = self.local.load(ResourceKind.INSTANCE)
        self.assertEqual([r.to_dict() for r in stored], [r.to_dict() for r in others])

    def test_zone_scoped_dns_example(self):
        z2_records = [record("c.b.com.", "/hostedzone/Z2"), record("d.b.com.", "/hostedzone/Z2")]
        self.local.save(
            ResourceKind.DNS,
            [record("old1.a.com.", "/hostedzone/Z1"), record("old2.a.com.", "/hostedzone/Z1")] + z2_records,
        )
        fresh = [record("new1.a.com.", "/hostedzone/Z1"), record("new2.a.com.", "/hostedzone/Z1")]

        reconcile(self.local, ResourceKind.DNS, "111", fresh, zone_ids={"/hostedzone/z1"})

        stored = self.local.load(ResourceKind.DNS)
        names = sorted(r.name for r in stored)
        self.assertEqual(names, ["c.b.com", "d.b.com", "new1.a.com", "new2.a.com"])
        self.assertEqual(
            [r.to_dict() for r in stored if r.zone_id == "/hostedzone/Z2"],
            [r.to_dict() for r in z2_records],
        )

    def test_untagged_records_are_rejected(self):
        with self.assertRaises(InventoryError):
            reconcile(self.local, ResourceKind.ELB, "111", [LoadBalancer({"DNSName": "x"})])
        with self.assertRaises(InventoryError):
            reconcile(self.local, ResourceKind.ELB, "", [])


class TestUpdater(StoreTestCase):
    def test_windowed_skip_leaves_store_untouched(self):
        self.local.save(ResourceKind.INSTANCE, [ComputeInstance.tagged({"InstanceId": "i-1"}, IDENTITY)])
        self.set_mtime(ResourceKind.INSTANCE, BASE_TIME)
        path = self.local.path(ResourceKind.INSTANCE)
        content, mtime = path.read_bytes(), path.stat().st_mtime_ns

        fetch = Mock()
        ctx = self.context(audit=FakeAudit([AuditEvent("DescribeInstances")]))
        outcome = update_store(ctx, ResourceKind.INSTANCE, 60, fetch)

        fetch.assert_not_called()
        self.assertFalse(outcome.updated)
        self.assertEqual(path.read_bytes(), content)
        self.assertEqual(path.stat().st_mtime_ns, mtime)

    def test_full_update_creates_store(self):
        ctx = self.context()
        fetch = Mock(return_value=[DeploymentStack.tagged({"StackId": "s-1"}, IDENTITY)])
        outcome = update_store(ctx, ResourceKind.STACK, 0, fetch)

        fetch.assert_called_once_with(ctx)
        self.assertTrue(outcome.updated)
        self.assertEqual(len(self.local.load(ResourceKind.STACK)), 1)

    def test_unreadable_store_is_skipped(self):
        path = self.local.path(ResourceKind.ELB)
        path.write_text("{broken")
        fetch = Mock()
        outcome = update_store(self.context(), ResourceKind.ELB, 0, fetch)

        fetch.assert_not_called()
        self.assertFalse(outcome.updated)
        self.assertEqual(path.read_text(), "{broken")

    def test_failing_newer_remote_is_skipped(self):
        self.local.save(ResourceKind.ELB, [LoadBalancer.tagged({"DNSName": "local"}, IDENTITY)])
        self.set_mtime(ResourceKind.ELB, BASE_TIME)
        path = self.local.path(ResourceKind.ELB)
        content, mtime = path.read_bytes(), path.stat().st_mtime_ns

        fetch = Mock()
        remote = newer_unreadable_remote(BASE_TIME + 60, httpx.Response(500))
        outcome = update_store(self.context(remote=remote), ResourceKind.ELB, 0, fetch)

        fetch.assert_not_called()
        self.assertEqual(outcome.skipped_reason, "store unreadable")
        self.assertEqual(path.read_bytes(), content)
        self.assertEqual(path.stat().st_mtime_ns, mtime)

    def test_dns_update_fetches_only_owned_zones(self):
        self.local.save(
            ResourceKind.ZONE,
            [zone("/hostedzone/Z1", "a.com."), zone("/hostedzone/Z2", "b.com.", account=OTHER)],
        )
        other_record = record("x.b.com.", "/hostedzone/Z2", account=OTHER)
        self.local.save(ResourceKind.DNS, [record("old.a.com.", "/hostedzone/Z1"), other_record])

        fetched = []

        def fetch_zone(ctx, target):
            fetched.append(target.zone_id)
            return [record("new.a.com.", target.zone_id)]

        outcome = update_dns_store(self.context(), 0, ["a.com", "b.com"], fetch_zone)

        self.assertTrue(outcome.updated)
        self.assertEqual(fetched, ["/hostedzone/Z1"])
        stored = {(r.name, r.account_id) for r in self.local.load(ResourceKind.DNS)}
        self.assertEqual(stored, {("x.b.com", "222"), ("new.a.com", "111")})


class TestUpdateAllStores(StoreTestCase):
    def test_unreadable_store_only_skips_its_kind(self):
        elb_path = self.local.path(ResourceKind.ELB)
        elb_path.write_text("{broken")

        fetch_zone_records = Mock(
            side_effect=lambda ctx, target: [record("www.a.com.", target.zone_id)]
        )
        fetch_load_balancers = Mock()
        ctx = self.context()
        with patch(
            "services.ec2_service.fetch_instances",
            return_value=[ComputeInstance.tagged({"InstanceId": "i-1"}, IDENTITY)],
        ), patch(
            "services.route53_service.fetch_zones",
            return_value=[zone("/hostedzone/Z1", "a.com.")],
        ), patch(
            "services.route53_service.fetch_zone_records", fetch_zone_records
        ), patch(
            "services.elb_service.fetch_load_balancers", fetch_load_balancers
        ), patch(
            "services.cloudformation_service.fetch_stacks",
            return_value=[DeploymentStack.tagged({"StackId": "s-1"}, IDENTITY)],
        ):
            outcomes = update_all_stores(ctx)

        self.assertEqual(
            [o.kind for o in outcomes],
            [ResourceKind.INSTANCE, ResourceKind.ZONE, ResourceKind.ELB, ResourceKind.STACK, ResourceKind.DNS],
        )
        self.assertEqual(
            [o.updated for o in outcomes], [True, True, False, True, True]
        )
        fetch_load_balancers.assert_not_called()
        self.assertEqual(elb_path.read_text(), "{broken")

        # DNS reads the zone store written earlier in the same run
        self.assertEqual(fetch_zone_records.call_count, 1)
        self.assertEqual(fetch_zone_records.call_args[0][1].zone_id, "/hostedzone/Z1")
        self.assertEqual([r.name for r in self.local.load(ResourceKind.DNS)], ["www.a.com"])


class TestServiceProviders(StoreTestCase):
    def test_instances_are_flattened_from_reservations(self):
        ec2 = Mock()
        ec2.describe_instances.side_effect = [
            {"Reservations": [{"Instances": [{"InstanceId": "i-1"}, {"InstanceId": "i-2"}]}], "NextToken": "t1"},
            {"Reservations": [{"Instances": [{"InstanceId": "i-3"}]}]},
        ]
        ctx = self.context()
        ctx.session.client.return_value = ec2

        instances = fetch_instances(ctx)

        self.assertEqual([i.instance_id for i in instances], ["i-1", "i-2", "i-3"])
        self.assertEqual(
            ec2.describe_instances.call_args_list,
            [call(MaxResults=500), call(MaxResults=500, NextToken="t1")],
        )
        self.assertEqual(InstanceProvider.page_size, 500)

    def test_zone_listing_stops_when_not_truncated(self):
        route53 = Mock()
        route53.list_hosted_zones.return_value = {
            "HostedZones": [{"Id": "/hostedzone/Z1"}],
            "IsTruncated": False,
            "NextMarker": "ignored",
        }
        page = ZoneProvider(route53).list_page(None, 100)
        self.assertIsNone(page.next_cursor)
        route53.list_hosted_zones.assert_called_once_with(MaxItems="100")

    def test_zone_throttling_uses_api_delay(self):
        ctx = self.context()
        route53 = ctx.session.client.return_value
        route53.list_hosted_zones.side_effect = [
            client_error("Throttling", "Rate exceeded", "ListHostedZones"),
            {"HostedZones": [{"Id": "/hostedzone/Z1", "Name": "a.com."}], "IsTruncated": False},
        ]
        zones = fetch_zones(ctx)

        self.assertEqual([z.zone_id for z in zones], ["/hostedzone/Z1"])
        ctx.sleep.assert_called_once_with(ctx.config.api_delay_seconds)
        self.assertEqual(ctx.config.api_delay_seconds, 1)

    def test_record_set_cursor(self):
        route53 = Mock()
        route53.list_resource_record_sets.side_effect = [
            {
                "ResourceRecordSets": [{"Name": "a.example.com.", "Type": "A"}],
                "IsTruncated": True,
                "NextRecordName": "b.example.com.",
                "NextRecordType": "CNAME",
            },
            {"ResourceRecordSets": [{"Name": "b.example.com.", "Type": "CNAME"}], "IsTruncated": False},
        ]
        tag = partial(DNSRecord.tagged_in_zone, identity=IDENTITY, zone_id="/hostedzone/Z1")
        records = fetch_all(RecordSetProvider(route53, "/hostedzone/Z1"), tag, 0, sleep=Mock())

        self.assertEqual([r.zone_id for r in records], ["/hostedzone/Z1"] * 2)
        route53.list_resource_record_sets.assert_called_with(
            HostedZoneId="/hostedzone/Z1",
            MaxItems="100",
            StartRecordName="b.example.com.",
            StartRecordType="CNAME",
        )

    def test_load_balancer_marker(self):
        elb = Mock()
        elb.describe_load_balancers.return_value = {
            "LoadBalancerDescriptions": [{"DNSName": "lb"}],
            "NextMarker": "m2",
        }
        page = LoadBalancerProvider(elb).list_page("m1", 400)
        self.assertEqual(page.next_cursor, "m2")
        elb.describe_load_balancers.assert_called_once_with(PageSize=400, Marker="m1")

    def test_cloudtrail_lookup(self):
        cloudtrail = Mock()
        cloudtrail.lookup_events.return_value = {
            "Events": [{"EventName": "CreateStack", "CloudTrailEvent": "{}"}]
        }
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)
        until = datetime(2024, 1, 2, tzinfo=timezone.utc)

        events = CloudTrailAuditLog(cloudtrail, 0, sleep=Mock()).lookup_events(
            "cloudformation.amazonaws.com", since, until
        )

        self.assertEqual(events, [AuditEvent("CreateStack", None, "{}")])
        cloudtrail.lookup_events.assert_called_once_with(
            LookupAttributes=[{"AttributeKey": "EventSource", "AttributeValue": "cloudformation.amazonaws.com"}],
            StartTime=since,
            EndTime=until,
            MaxResults=50,
        )


class TestSync(StoreTestCase):
    def remote(self, timestamp, s3):
        return remote_store(
            lambda request: httpx.Response(200, headers={"Last-Modified": http_date(timestamp)}),
            s3,
        )

    def test_uploads_newer_local_store(self):
        s3 = Mock()
        self.local.save(ResourceKind.DNS, [])
        self.set_mtime(ResourceKind.DNS, BASE_TIME + 60)

        outcomes = sync_to_remote(self.local, self.remote(BASE_TIME, s3), kinds=[ResourceKind.DNS])

        self.assertIs(outcomes[0].action, SyncAction.UPLOADED)
        s3.upload_file.assert_called_once_with(
            str(self.local.path(ResourceKind.DNS)), "awsinfo-bucket", "dns.json"
        )

    def test_skips_when_remote_is_newer(self):
        s3 = Mock()
        self.local.save(ResourceKind.DNS, [])
        self.set_mtime(ResourceKind.DNS, BASE_TIME)

        outcomes = sync_to_remote(self.local, self.remote(BASE_TIME + 60, s3), kinds=[ResourceKind.DNS])

        self.assertIs(outcomes[0].action, SyncAction.SKIPPED_OLDER)
        s3.upload_file.assert_not_called()

    def test_force_uploads_anyway(self):
        s3 = Mock()
        self.local.save(ResourceKind.DNS, [])
        self.set_mtime(ResourceKind.DNS, BASE_TIME)

        outcomes = sync_to_remote(
            self.local, self.remote(BASE_TIME + 60, s3), force=True, kinds=[ResourceKind.DNS]
        )
        self.assertIs(outcomes[0].action, SyncAction.UPLOADED)

    def test_missing_local_stores_are_skipped(self):
        s3 = Mock()
        outcomes = sync_to_remote(self.local, self.remote(BASE_TIME, s3))
        self.assertEqual({o.action for o in outcomes}, {SyncAction.SKIPPED_MISSING})
        self.assertEqual(len(outcomes), 5)


class TestConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config_dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults_without_config_file(self):
        config = load_config(config_dir=self.config_dir)
        self.assertEqual(config.s3_bucket, "awsinfo")
        self.assertEqual(config.api_delay_seconds, 1)
        self.assertEqual(config.r53_api_delay_seconds, 180)
        self.assertIsNone(config.region)

    @patch.dict(os.environ, {}, clear=True)
    def test_incomplete_config_file(self):
        (self.config_dir / "config.yaml").write_text("s3_bucket: mine\n")
        with self.assertRaises(ConfigError):
            load_config(config_dir=self.config_dir)

    @patch.dict(
        os.environ,
        {"AWSINFO_S3_BUCKET": "from-env", "AWS_REGION": "eu-west-1"},
        clear=True,
    )
    def test_environment_overrides_file(self):
        (self.config_dir / "config.yaml").write_text(
            "s3_bucket: from-file\n"
            "s3_url_base: https://files.example.test\n"
            "api_seconds_delay: 2\n"
            "r53_api_seconds_delay: 60\n"
        )
        config = load_config(config_dir=self.config_dir)
        self.assertEqual(config.s3_bucket, "from-env")
        self.assertEqual(config.s3_url_base, "https://files.example.test")
        self.assertEqual(config.r53_api_delay_seconds, 60)
        self.assertEqual(config.region, "eu-west-1")

    @patch.dict(os.environ, {"AWSINFO_API_SECONDS_DELAY": "soon"}, clear=True)
    def test_invalid_delay(self):
        with self.assertRaises(ConfigError):
            load_config(config_dir=self.config_dir)

    @patch.dict(os.environ, {"AMAZON_REGION": "ap-south-1", "AWS_DEFAULT_REGION": "us-east-1"}, clear=True)
    def test_region_environment_order(self):
        self.assertEqual(region_from_env(), "ap-south-1")

    def test_skeleton_config(self):
        config = InventoryConfig(config_dir=self.config_dir)
        created = create_skeleton_config(config)

        self.assertEqual(created, self.config_dir / "config.yaml")
        self.assertEqual(stat.S_IMODE(created.stat().st_mode), 0o600)
        self.assertEqual(load_config_file(created)["r53_api_seconds_delay"], 180)
        self.assertIsNone(create_skeleton_config(config))


class TestIdentity(unittest.TestCase):
    def session(self, sts, iam):
        session = Mock()
        session.client.side_effect = lambda name, **kwargs: {"sts": sts, "iam": iam}[name]
        return session

    def test_account_id_and_alias(self):
        sts, iam = Mock(), Mock()
        sts.get_caller_identity.return_value = {"Account": "111"}
        iam.list_account_aliases.return_value = {"AccountAliases": ["prod"]}
        self.assertEqual(resolve_identity(self.session(sts, iam)), IDENTITY)

    def test_account_without_alias(self):
        sts, iam = Mock(), Mock()
        sts.get_caller_identity.return_value = {"Account": "111"}
        iam.list_account_aliases.return_value = {"AccountAliases": []}
        self.assertEqual(resolve_identity(self.session(sts, iam)).account_alias, "111")

    def test_missing_credentials(self):
        sts, iam = Mock(), Mock()
        sts.get_caller_identity.side_effect = NoCredentialsError()
        with self.assertRaises(IdentityError):
            resolve_identity(self.session(sts, iam))

    def test_missing_region(self):
        session = Mock(region_name=None)
        with self.assertRaises(ConfigError):
            resolve_region(InventoryConfig(config_dir=Path("/tmp")), session)
        session.region_name = "us-west-2"
        config = resolve_region(InventoryConfig(config_dir=Path("/tmp")), session)
        self.assertEqual(config.region, "us-west-2")


class TestOutputs(unittest.TestCase):
    def test_dns_listing_brief_and_verbose(self):
        records = [
            record("www.a.com.", "/hostedzone/Z1"),
            record("a.com.", "/hostedzone/Z1", rtype="TXT", values=('"v=spf1 -all"',)),
            record("mx.a.com.", "/hostedzone/Z1", rtype="MX", values=("10 mail.a.com",)),
        ]
        self.assertEqual([r[0] for r in dns_rows(records)], ["www.a.com"])
        verbose = dns_rows(records, verbose=True)
        self.assertEqual(len(verbose), 3)
        self.assertEqual(verbose[1][5], '"v=spf1 -all"')
        self.assertEqual(verbose[2][5], '"10 mail.a.com"')

    def test_dns_filter_matches_hidden_zone_id(self):
        records = [record("www.a.com.", "/hostedzone/ZONEONE"), record("www.b.com.", "/hostedzone/Z2")]
        self.assertEqual([r[0] for r in dns_rows(records, "zoneone")], ["www.a.com"])

    def test_zone_filter_is_case_insensitive(self):
        rows = zone_rows([zone("/hostedzone/Z1", "Example.com."), zone("/hostedzone/Z2", "other.io.")], "EXAMPLE")
        self.assertEqual(rows, [("Example.com", "public", "2", "/hostedzone/Z1")])

    def test_deleted_stacks_are_hidden(self):
        stacks = [
            DeploymentStack.tagged({"StackName": "live", "StackStatus": "CREATE_COMPLETE"}, IDENTITY),
            DeploymentStack.tagged({"StackName": "gone", "StackStatus": "DELETE_COMPLETE"}, IDENTITY),
        ]
        self.assertEqual([row[0] for row, _ in stack_rows(stacks)], ["live"])

    def test_instance_filter_covers_tags(self):
        instances = [
            ComputeInstance.tagged({"InstanceId": "i-1", "Tags": [{"Key": "Environment", "Value": "qa"}]}, IDENTITY),
            ComputeInstance.tagged({"InstanceId": "i-2"}, IDENTITY),
        ]
        rows = instance_rows(instances, "QA")
        self.assertEqual([r[1] for r in rows], ["i-1"])
        self.assertEqual(len(instance_rows(instances, verbose=True)[0]), 14)

    def test_elb_without_https_has_no_certificate(self):
        lb = LoadBalancer.tagged({"DNSName": "lb"}, IDENTITY)
        self.assertEqual(elb_cert_rows([lb]), [("lb", "-")])


class FakeResolver:
    def __init__(self, cnames, missing=()):
        self.cnames = cnames
        self.missing = missing

    def resolve(self, name, rdtype, raise_on_no_answer=True):
        if name in self.missing:
            raise dns.resolver.NXDOMAIN()
        target = self.cnames.get(name)
        if target is None:
            return SimpleNamespace(rrset=None)
        return SimpleNamespace(rrset=[SimpleNamespace(target=target)])


class TestBreakdown(unittest.TestCase):
    def setUp(self):
        self.lb = LoadBalancer.tagged(
            {
                "DNSName": "web-1.us-east-1.elb.amazonaws.com",
                "ListenerDescriptions": [{"Listener": {"LoadBalancerPort": 80, "InstancePort": 8080, "Protocol": "HTTP"}}],
                "Instances": [{"InstanceId": "i-1"}, {"InstanceId": "i-9"}],
            },
            IDENTITY,
        )
        self.instances = [ComputeInstance.tagged({"InstanceId": "i-1"}, IDENTITY)]

    def test_cname_chain(self):
        resolver = FakeResolver({"www.a.com": "edge.a.com.", "edge.a.com": "web-1.us-east-1.elb.amazonaws.com."})
        self.assertEqual(follow_cname_chain("www.a.com", resolver), "web-1.us-east-1.elb.amazonaws.com")

    def test_nonexistent_name(self):
        with self.assertRaises(ResolutionError):
            follow_cname_chain("nope.a.com", FakeResolver({}, missing=("nope.a.com",)))

    def test_breakdown_through_cname(self):
        resolver = FakeResolver({"www.a.com": "web-1.us-east-1.elb.amazonaws.com."})
        records = Mock(return_value=[])
        result = breakdown("www.a.com", [self.lb], records, lambda: self.instances, resolver)

        self.assertIs(result.load_balancer, self.lb)
        records.assert_not_called()
        self.assertEqual(result.instances[0].instance_id, "i-1")
        self.assertEqual(result.instances[1], "i-9")

        output = io.StringIO()
        render_breakdown(Console(file=output, width=200), result)
        self.assertIn("->", output.getvalue())
        self.assertIn("i-9 not found in instance store", output.getvalue())

    def test_breakdown_through_alias_record(self):
        alias = DNSRecord.tagged_in_zone(
            {"Name": "app.a.com.", "Type": "A", "AliasTarget": {"DNSName": "dualstack.web-1.us-east-1.elb.amazonaws.com."}},
            IDENTITY,
            "/hostedzone/Z1",
        )
        result = breakdown("app.a.com", [self.lb], lambda: [alias], lambda: self.instances, FakeResolver({}))
        self.assertIs(result.load_balancer, self.lb)

    def test_unknown_name(self):
        instances = Mock()
        result = breakdown("app.a.com", [self.lb], lambda: [], instances, FakeResolver({}))
        self.assertIsNone(result.load_balancer)
        instances.assert_not_called()


class TestCLIIntegration(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()
        self.tmp = tempfile.TemporaryDirectory()
        self.config_dir = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def invoke(self, *args):
        return self.runner.invoke(app, ["--config-dir", self.config_dir, *args])

    def test_help_command(self):
        result = self.runner.invoke(app, ["--help"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("update", result.output)
        self.assertIn("breakdown", result.output)

    def test_init_config(self):
        result = self.invoke("init-config")
        self.assertEqual(result.exit_code, 0)
        self.assertTrue((Path(self.config_dir) / "config.yaml").exists())

        result = self.invoke("init-config")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("already", result.output)

    def test_invalid_update_window(self):
        result = self.invoke("update", "20000")
        self.assertEqual(result.exit_code, 1)

    @patch.object(RemoteStore, "modified_time", return_value=ZERO_TIME)
    def test_zone_listing(self, _):
        LocalStore(Path(self.config_dir)).save(
            ResourceKind.ZONE, [zone("/hostedzone/Z1", "example.com."), zone("/hostedzone/Z2", "other.io.")]
        )
        result = self.invoke("zones", "example")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("example.com", result.output)
        self.assertNotIn("other.io", result.output)

    @patch.object(RemoteStore, "modified_time", return_value=ZERO_TIME)
    def test_listing_without_any_store_fails(self, _):
        result = self.invoke("elbs")
        self.assertEqual(result.exit_code, 1)

    @patch.object(RemoteStore, "modified_time", return_value=ZERO_TIME)
    def test_breakdown_without_elb_store(self, _):
        LocalStore(Path(self.config_dir)).save(
            ResourceKind.DNS, [record("app.a.com.", "/hostedzone/Z1")]
        )
        with patch("awsinfo_lib.breakdown.make_resolver", return_value=FakeResolver({})):
            result = self.invoke("breakdown", "app.a.com")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("not a known load balancer", result.output)

    def test_purge(self):
        LocalStore(Path(self.config_dir)).save(ResourceKind.DNS, [])
        result = self.invoke("purge")
        self.assertEqual(result.exit_code, 0)
        self.assertFalse((Path(self.config_dir) / "dns.json").exists())


if __name__ == "__main__":
    unittest.main()
