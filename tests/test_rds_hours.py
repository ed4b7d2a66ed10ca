"""Tests for the RDS business-hours Lambda."""
from unittest.mock import MagicMock

import pytest

from helpers import HOLIDAY, SATURDAY, WORKDAY, client_error


@pytest.fixture
def rds_hours(load_lambda, monkeypatch):
    module = load_lambda("business_hours", "rds_hours", env={"DB_INSTANCE_IDENTIFIER": "sample-app-dev-db"})
    monkeypatch.setattr(module, "rds_client", MagicMock())
    return module


class TestRestDays:
    @pytest.mark.parametrize("moment", [SATURDAY, HOLIDAY])
    def test_start_skipped(self, rds_hours, freeze_now, moment):
        freeze_now(rds_hours, moment)

        result = rds_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "skipped", "reason": "rest_day"}
        rds_hours.rds_client.start_db_instance.assert_not_called()

    def test_stop_still_runs(self, rds_hours, freeze_now):
        freeze_now(rds_hours, SATURDAY)

        result = rds_hours.lambda_handler({"action": "stop"}, None)

        assert result["status"] == "ok"
        rds_hours.rds_client.stop_db_instance.assert_called_once_with(DBInstanceIdentifier="sample-app-dev-db")


class TestWorkdays:
    def test_start(self, rds_hours, freeze_now):
        freeze_now(rds_hours, WORKDAY)

        result = rds_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "ok", "changed": True}
        rds_hours.rds_client.start_db_instance.assert_called_once_with(DBInstanceIdentifier="sample-app-dev-db")

    def test_already_in_state_is_not_an_error(self, rds_hours, freeze_now):
        freeze_now(rds_hours, WORKDAY)
        rds_hours.rds_client.start_db_instance.side_effect = client_error("InvalidDBInstanceState")

        result = rds_hours.lambda_handler({"action": "start"}, None)

        assert result == {"action": "start", "status": "ok", "changed": False}

    def test_other_errors_are_reported(self, rds_hours, freeze_now):
        freeze_now(rds_hours, WORKDAY)
        rds_hours.rds_client.stop_db_instance.side_effect = client_error("AccessDenied")

        result = rds_hours.lambda_handler({"action": "stop"}, None)

        assert result == {"action": "stop", "status": "failed", "error": "AccessDenied"}


@pytest.mark.parametrize("event", [{}, None, {"action": "reboot"}])
def test_unknown_action_is_ignored(rds_hours, freeze_now, event):
    freeze_now(rds_hours, WORKDAY)

    result = rds_hours.lambda_handler(event, None)

    assert result["status"] == "ignored"
    rds_hours.rds_client.start_db_instance.assert_not_called()
    rds_hours.rds_client.stop_db_instance.assert_not_called()
