"""Tests for the ECS business-hours Lambda."""
from unittest.mock import MagicMock, call

import pytest

from helpers import HOLIDAY, WORKDAY, client_error

ENV = {
    "CLUSTER_NAME": "sample-app-dev-cluster",
    "FRONTEND_SERVICE_NAME": "sample-app-dev-frontend",
    "BACKEND_SERVICE_NAME": "sample-app-dev-backend",
    "JOB_SERVICE_NAME": "sample-app-dev-job",
    "DESIRED_UP_COUNT": "1",
}


@pytest.fixture
def ecs_hours(load_lambda, monkeypatch):
    module = load_lambda("business_hours", "ecs_hours", env=ENV)
    monkeypatch.setattr(module, "ecs_client", MagicMock())
    return module


def test_service_names_from_environment(ecs_hours):
    assert ecs_hours.SERVICE_NAMES == [
        "sample-app-dev-frontend", "sample-app-dev-backend", "sample-app-dev-job",
    ]


def test_up_skipped_on_holiday(ecs_hours, freeze_now):
    freeze_now(ecs_hours, HOLIDAY)

    result = ecs_hours.lambda_handler({"action": "up"}, None)

    assert result == {"action": "up", "status": "skipped", "reason": "rest_day"}
    ecs_hours.ecs_client.update_service.assert_not_called()


def test_down_runs_on_holiday(ecs_hours, freeze_now):
    freeze_now(ecs_hours, HOLIDAY)

    result = ecs_hours.lambda_handler({"action": "down"}, None)

    assert result["status"] == "ok"
    assert result["desired_count"] == 0
    assert ecs_hours.ecs_client.update_service.call_count == 3
    for _, kwargs in ecs_hours.ecs_client.update_service.call_args_list:
        assert kwargs["desiredCount"] == 0


def test_up_on_workday(ecs_hours, freeze_now):
    freeze_now(ecs_hours, WORKDAY)

    result = ecs_hours.lambda_handler({"action": "up"}, None)

    assert result["status"] == "ok"
    ecs_hours.ecs_client.update_service.assert_has_calls([
        call(cluster="sample-app-dev-cluster", service="sample-app-dev-frontend", desiredCount=1),
        call(cluster="sample-app-dev-cluster", service="sample-app-dev-backend", desiredCount=1),
        call(cluster="sample-app-dev-cluster", service="sample-app-dev-job", desiredCount=1),
    ])


def test_partial_failure_keeps_going(ecs_hours, freeze_now):
    freeze_now(ecs_hours, WORKDAY)
    ecs_hours.ecs_client.update_service.side_effect = [None, client_error("ServiceNotFoundException"), None]

    result = ecs_hours.lambda_handler({"action": "down"}, None)

    assert result["status"] == "failed"
    assert result["errors"] == {"sample-app-dev-backend": "ServiceNotFoundException"}
    assert ecs_hours.ecs_client.update_service.call_count == 3


def test_unknown_action(ecs_hours, freeze_now):
    freeze_now(ecs_hours, WORKDAY)
    assert ecs_hours.lambda_handler({"action": "start"}, None)["status"] == "ignored"
    ecs_hours.ecs_client.update_service.assert_not_called()
