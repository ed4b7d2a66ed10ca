"""Tests for the bastion EC2 business-hours Lambda."""
from unittest.mock import MagicMock

import pytest

from helpers import SATURDAY, WORKDAY, client_error

DNS_ENV = {
    "INSTANCE_ID": "i-0123456789abcdef0",
    "HOSTED_ZONE_ID": "Z0000000000000",
    "RECORD_NAME": "bastion.dev.example.com",
    "DNS_POLL_ATTEMPTS": "3",
    "DNS_POLL_INTERVAL_SECONDS": "0",
}


def describe(state, ip=None):
    instance = {"State": {"Name": state}}
    if ip:
        instance["PublicIpAddress"] = ip
    return {"Reservations": [{"Instances": [instance]}]}


def _mocked(module, monkeypatch):
    monkeypatch.setattr(module, "ec2_client", MagicMock())
    monkeypatch.setattr(module, "route53_client", MagicMock())
    return module


@pytest.fixture
def ec2_hours(load_lambda, monkeypatch):
    return _mocked(load_lambda("business_hours", "ec2_hours", env=DNS_ENV), monkeypatch)


@pytest.fixture
def ec2_hours_no_dns(load_lambda, monkeypatch):
    env = {**DNS_ENV, "HOSTED_ZONE_ID": "", "RECORD_NAME": ""}
    return _mocked(load_lambda("business_hours", "ec2_hours", env=env), monkeypatch)


class TestStartOnRestDay:
    def test_stopped_instance_is_left_alone(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, SATURDAY)
        ec2_hours.ec2_client.describe_instances.return_value = describe("stopped")

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "skipped", "reason": "rest_day"}
        ec2_hours.ec2_client.start_instances.assert_not_called()
        ec2_hours.route53_client.change_resource_record_sets.assert_not_called()

    def test_manually_started_instance_still_gets_dns(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, SATURDAY)
        ec2_hours.ec2_client.describe_instances.return_value = describe("running", "203.0.113.10")

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result["status"] == "skipped"
        assert result["dns_updated"] is True
        ec2_hours.ec2_client.start_instances.assert_not_called()
        batch = ec2_hours.route53_client.change_resource_record_sets.call_args.kwargs["ChangeBatch"]
        record = batch["Changes"][0]["ResourceRecordSet"]
        assert batch["Changes"][0]["Action"] == "UPSERT"
        assert record["Name"] == "bastion.dev.example.com"
        assert record["ResourceRecords"] == [{"Value": "203.0.113.10"}]


class TestStartOnWorkday:
    def test_starts_then_waits_for_ip(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.describe_instances.side_effect = [
            describe("stopped"),
            describe("pending"),
            describe("running", "203.0.113.20"),
        ]

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "ok", "started": True, "dns_updated": True}
        ec2_hours.ec2_client.start_instances.assert_called_once_with(InstanceIds=["i-0123456789abcdef0"])

    def test_no_public_ip_does_not_fail_start(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.describe_instances.side_effect = [
            describe("stopped"),
            describe("pending"),
            describe("pending"),
            describe("pending"),
        ]

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result["status"] == "ok"
        assert result["started"] is True
        assert result["dns_updated"] is False
        # initial describe + one per poll attempt
        assert ec2_hours.ec2_client.describe_instances.call_count == 4

    def test_route53_failure_is_reported(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.describe_instances.return_value = describe("running", "203.0.113.30")
        ec2_hours.route53_client.change_resource_record_sets.side_effect = client_error("InvalidChangeBatch")

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result["status"] == "ok"
        assert result["dns_updated"] is False

    def test_without_dns_configuration(self, ec2_hours_no_dns, freeze_now):
        freeze_now(ec2_hours_no_dns, WORKDAY)
        ec2_hours_no_dns.ec2_client.describe_instances.return_value = describe("stopped")

        result = ec2_hours_no_dns.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "ok", "started": True}
        ec2_hours_no_dns.route53_client.change_resource_record_sets.assert_not_called()

    def test_describe_failure(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.describe_instances.side_effect = client_error("InvalidInstanceID.NotFound")

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "failed", "error": "InvalidInstanceID.NotFound"}

    def test_start_failure_is_reported_and_skips_dns(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.describe_instances.return_value = describe("stopped")
        ec2_hours.ec2_client.start_instances.side_effect = client_error("InsufficientInstanceCapacity")

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "failed", "error": "InsufficientInstanceCapacity"}
        assert ec2_hours.ec2_client.describe_instances.call_count == 1
        ec2_hours.route53_client.change_resource_record_sets.assert_not_called()

    def test_start_race_with_pending_instance(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.describe_instances.side_effect = [
            describe("stopped"),
            describe("running", "203.0.113.40"),
        ]
        ec2_hours.ec2_client.start_instances.side_effect = client_error("IncorrectInstanceState")

        result = ec2_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "ok", "started": False, "dns_updated": True}


class TestStop:
    def test_stop_runs_on_rest_day(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, SATURDAY)

        result = ec2_hours.lambda_handler({"action": "stop"}, None)

        assert result == {"action": "stop", "status": "ok", "changed": True}
        ec2_hours.ec2_client.stop_instances.assert_called_once_with(InstanceIds=["i-0123456789abcdef0"])

    def test_already_stopped(self, ec2_hours, freeze_now):
        freeze_now(ec2_hours, WORKDAY)
        ec2_hours.ec2_client.stop_instances.side_effect = client_error("IncorrectInstanceState")

        result = ec2_hours.lambda_handler({"action": "stop"}, None)

        assert result == {"action": "stop", "status": "ok", "changed": False}
