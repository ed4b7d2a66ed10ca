"""Tests for the database user bootstrap Lambda."""
import json
from unittest.mock import MagicMock

import pymysql
import pytest

ENV = {
    "DB_HOST": "sample-app-dev-db.abc.ap-northeast-3.rds.amazonaws.com",
    "DB_PORT": "3306",
    "DB_NAME": "sample_app_dev",
    "MASTER_SECRET_ARN": "arn:master",
    "APPUSER_SECRET_ARN": "arn:appuser",
    "READONLY_SECRET_ARN": "arn:readonly",
}

SECRETS = {
    "arn:master": {"username": "admin", "password": "master-pw"},
    "arn:appuser": {"username": "appuser", "password": "app-pw"},
    "arn:readonly": {"username": "readonlyuser", "password": "ro-pw"},
}


@pytest.fixture
def db_init(load_lambda, monkeypatch):
    module = load_lambda("db_init", env=ENV)
    client = MagicMock()
    client.get_secret_value.side_effect = lambda SecretId: {"SecretString": json.dumps(SECRETS[SecretId])}
    monkeypatch.setattr(module, "secrets_client", client)
    monkeypatch.setattr(module.time, "sleep", MagicMock())
    return module


@pytest.fixture
def connection(db_init, monkeypatch):
    conn = MagicMock()
    monkeypatch.setattr(db_init.pymysql, "connect", MagicMock(return_value=conn))
    return conn


def executed(conn) -> list:
    cursor = conn.cursor.return_value.__enter__.return_value
    return [c.args for c in cursor.execute.call_args_list]


class TestPlanStatements:
    def test_application_user(self, db_init):
        statements = db_init.plan_statements("appuser", "pw", "sample_app_dev", application=True)

        assert statements == [
            ("CREATE USER IF NOT EXISTS `appuser`@'%%' IDENTIFIED BY %s", ("pw",)),
            ("ALTER USER `appuser`@'%%' IDENTIFIED BY %s", ("pw",)),
            ("GRANT ALL PRIVILEGES ON `sample_app_dev`.* TO `appuser`@'%'", None),
            ("REVOKE DROP ON `sample_app_dev`.* FROM `appuser`@'%'", None),
            ("FLUSH PRIVILEGES", None),
        ]

    def test_read_only_user(self, db_init):
        statements = db_init.plan_statements("readonlyuser", "pw", "sample_app_dev", application=False)

        assert ("GRANT SELECT ON `sample_app_dev`.* TO `readonlyuser`@'%'", None) in statements
        assert not any("ALL PRIVILEGES" in sql for sql, _ in statements)

    def test_identifiers_are_quoted(self, db_init):
        sql, _ = db_init.plan_statements("we`ird", "pw", "db", application=False)[0]
        assert "`we``ird`" in sql

    def test_password_is_never_inlined(self, db_init):
        for sql, _ in db_init.plan_statements("appuser", "s3cret'pw", "db", application=True):
            assert "s3cret" not in sql


class TestConverge:
    def test_create_converges_both_users(self, db_init, connection):
        result = db_init.lambda_handler({"RequestType": "Create"}, None)

        assert result == {"PhysicalResourceId": f"{ENV['DB_HOST']}:{ENV['DB_NAME']}"}
        db_init.pymysql.connect.assert_called_once()
        kwargs = db_init.pymysql.connect.call_args.kwargs
        assert kwargs["user"] == "admin"
        assert kwargs["port"] == 3306
        statements = executed(connection)
        assert statements[0] == ("CREATE USER IF NOT EXISTS `appuser`@'%%' IDENTIFIED BY %s", ("app-pw",))
        assert ("GRANT SELECT ON `sample_app_dev`.* TO `readonlyuser`@'%'", None) in statements
        connection.commit.assert_called_once()
        connection.close.assert_called_once()

    def test_rerun_is_identical_and_non_destructive(self, db_init, connection):
        db_init.lambda_handler({"RequestType": "Create"}, None)
        first = executed(connection)
        connection.reset_mock()

        db_init.lambda_handler({"RequestType": "Update"}, None)
        second = executed(connection)

        assert first == second
        destructive = [sql for sql, _ in second if sql.split()[0] in ("DROP", "DELETE", "TRUNCATE", "REVOKE")]
        assert destructive == ["REVOKE DROP ON `sample_app_dev`.* FROM `appuser`@'%'"]

    def test_missing_request_type_defaults_to_create(self, db_init, connection):
        db_init.lambda_handler({}, None)
        connection.commit.assert_called_once()

    def test_connection_closed_when_statement_fails(self, db_init, connection):
        cursor = connection.cursor.return_value.__enter__.return_value
        cursor.execute.side_effect = pymysql.err.OperationalError(1045, "Access denied")

        with pytest.raises(pymysql.err.OperationalError):
            db_init.lambda_handler({"RequestType": "Create"}, None)
        connection.close.assert_called_once()
        connection.commit.assert_not_called()

    def test_secret_without_password(self, db_init, connection):
        broken = {**SECRETS, "arn:appuser": {"username": "appuser"}}
        db_init.secrets_client.get_secret_value.side_effect = (
            lambda SecretId: {"SecretString": json.dumps(broken[SecretId])})

        with pytest.raises(ValueError, match="AppUser secret missing username/password"):
            db_init.lambda_handler({"RequestType": "Create"}, None)

    def test_missing_environment(self, db_init, monkeypatch):
        monkeypatch.delenv("READONLY_SECRET_ARN")

        with pytest.raises(RuntimeError, match="READONLY_SECRET_ARN"):
            db_init.lambda_handler({"RequestType": "Create"}, None)


class TestDelete:
    def test_echoes_existing_physical_id(self, db_init, connection):
        result = db_init.lambda_handler({"RequestType": "Delete", "PhysicalResourceId": "existing-id"}, None)

        assert result == {"PhysicalResourceId": "existing-id"}
        db_init.pymysql.connect.assert_not_called()

    def test_falls_back_to_host_and_name(self, db_init):
        result = db_init.lambda_handler({"RequestType": "Delete"}, None)
        assert result == {"PhysicalResourceId": f"{ENV['DB_HOST']}:{ENV['DB_NAME']}"}

    def test_falls_back_to_constant(self, db_init, monkeypatch):
        monkeypatch.delenv("DB_HOST")
        result = db_init.lambda_handler({"RequestType": "Delete"}, None)
        assert result == {"PhysicalResourceId": "db-init"}


class TestConnectRetry:
    def test_retries_until_connected(self, db_init, monkeypatch):
        conn = MagicMock()
        connect = MagicMock(side_effect=[pymysql.err.OperationalError(2003, "unreachable"), conn])
        monkeypatch.setattr(db_init.pymysql, "connect", connect)

        assert db_init.connect_with_retry("host", 3306, "admin", "pw", "db") is conn
        assert connect.call_count == 2
        db_init.time.sleep.assert_called_once_with(db_init.CONNECT_RETRY_SECONDS)

    def test_gives_up_after_all_attempts(self, db_init, monkeypatch):
        connect = MagicMock(side_effect=pymysql.err.OperationalError(2003, "unreachable"))
        monkeypatch.setattr(db_init.pymysql, "connect", connect)

        with pytest.raises(pymysql.err.OperationalError):
            db_init.connect_with_retry("host", 3306, "admin", "pw", "db")
        assert connect.call_count == db_init.CONNECT_ATTEMPTS
        assert db_init.time.sleep.call_count == db_init.CONNECT_ATTEMPTS - 1


def test_unsupported_request_type(db_init):
    with pytest.raises(ValueError, match="Unsupported RequestType"):
        db_init.lambda_handler({"RequestType": "Replace"}, None)
