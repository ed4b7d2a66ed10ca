"""Database user bootstrap Lambda (CloudFormation custom resource provider).

On Create/Update the application and read-only MySQL accounts are converged
to the credentials stored in Secrets Manager:

  application (appuser)     - ALL PRIVILEGES on the database, minus DROP
  read-only (readonlyuser)  - SELECT on the database

Every statement is idempotent, so re-running with unchanged secrets is a
no-op and a rotated password is simply re-applied. Delete leaves the accounts
in place and echoes the physical resource id back to CloudFormation.

Environment variables (set by CDK):
  DB_HOST, DB_PORT, DB_NAME
  MASTER_SECRET_ARN, APPUSER_SECRET_ARN, READONLY_SECRET_ARN
"""
import os
import json
import time
import logging
from typing import Dict, List, Optional, Tuple

import boto3
import pymysql

logger = logging.getLogger()
logger.setLevel(logging.INFO)

secrets_client = boto3.client("secretsmanager")

CONNECT_ATTEMPTS = 12
CONNECT_RETRY_SECONDS = 10

REQUIRED_ENV = (
    "DB_HOST", "DB_PORT", "DB_NAME",
    "MASTER_SECRET_ARN", "APPUSER_SECRET_ARN", "READONLY_SECRET_ARN",
)

Statement = Tuple[str, Optional[tuple]]


def _quote(identifier: str) -> str:
    return "`" + identifier.replace("`", "``") + "`"


def plan_statements(username: str, password: str, db_name: str, application: bool) -> List[Statement]:
    """Return the (sql, args) pairs that converge one account.

    Statements executed with args go through pymysql's %-interpolation, so the
    host wildcard is written as '%%' there.
    """
    user = _quote(username)
    database = _quote(db_name)
    statements: List[Statement] = [
        (f"CREATE USER IF NOT EXISTS {user}@'%%' IDENTIFIED BY %s", (password,)),
        (f"ALTER USER {user}@'%%' IDENTIFIED BY %s", (password,)),
    ]
    if application:
        statements.append((f"GRANT ALL PRIVILEGES ON {database}.* TO {user}@'%'", None))
        statements.append((f"REVOKE DROP ON {database}.* FROM {user}@'%'", None))
    else:
        statements.append((f"GRANT SELECT ON {database}.* TO {user}@'%'", None))
    statements.append(("FLUSH PRIVILEGES", None))
    return statements


def get_secret_json(secret_arn: str) -> Dict[str, str]:
    response = secrets_client.get_secret_value(SecretId=secret_arn)
    secret_string = response.get("SecretString")
    if secret_string is None:
        secret_string = response["SecretBinary"].decode("utf-8")
    return json.loads(secret_string)


def _credentials(secret_arn: str, label: str) -> Dict[str, str]:
    secret = get_secret_json(secret_arn)
    if not secret.get("username") or not secret.get("password"):
        raise ValueError(f"{label} secret missing username/password")
    return secret


def connect_with_retry(host: str, port: int, user: str, password: str, database: str):
    """Open a connection, retrying while the instance is still coming up."""
    last_error = None
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            return pymysql.connect(
                host=host,
                port=port,
                user=user,
                password=password,
                database=database,
                connect_timeout=10,
                # TLS without CA verification (RDS presents its own CA)
                ssl={"check_hostname": False},
            )
        except pymysql.err.OperationalError as error:
            last_error = error
            logger.warning("MySQL connect failed (attempt %d/%d): %s", attempt, CONNECT_ATTEMPTS, error)
            if attempt < CONNECT_ATTEMPTS:
                time.sleep(CONNECT_RETRY_SECONDS)
    raise last_error


def ensure_user(connection, username: str, password: str, db_name: str, application: bool) -> None:
    with connection.cursor() as cursor:
        for sql, args in plan_statements(username, password, db_name, application):
            cursor.execute(sql, args)
    logger.info("Converged %s user %s on %s", "application" if application else "read-only", username, db_name)


def _physical_id() -> str:
    return f"{os.environ['DB_HOST']}:{os.environ['DB_NAME']}"


def on_delete(event) -> dict:
    existing_id = event.get("PhysicalResourceId")
    if existing_id:
        return {"PhysicalResourceId": existing_id}
    if os.environ.get("DB_HOST") and os.environ.get("DB_NAME"):
        return {"PhysicalResourceId": _physical_id()}
    return {"PhysicalResourceId": "db-init"}


def on_converge(_event) -> dict:
    missing = [name for name in REQUIRED_ENV if not os.environ.get(name)]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    db_name = os.environ["DB_NAME"]
    master = _credentials(os.environ["MASTER_SECRET_ARN"], "Master")
    appuser = _credentials(os.environ["APPUSER_SECRET_ARN"], "AppUser")
    readonly = _credentials(os.environ["READONLY_SECRET_ARN"], "ReadOnlyUser")

    connection = connect_with_retry(
        host=os.environ["DB_HOST"],
        port=int(os.environ["DB_PORT"]),
        user=master["username"],
        password=master["password"],
        database=db_name,
    )
    try:
        ensure_user(connection, appuser["username"], appuser["password"], db_name, application=True)
        ensure_user(connection, readonly["username"], readonly["password"], db_name, application=False)
        connection.commit()
    finally:
        connection.close()

    return {"PhysicalResourceId": _physical_id()}


HANDLERS = {
    "Create": on_converge,
    "Update": on_converge,
    "Delete": on_delete,
}


def lambda_handler(event, _context):
    event = event or {}
    request_type = event.get("RequestType") or "Create"
    logger.info("DB init request: %s", request_type)
    handler = HANDLERS.get(request_type)
    if handler is None:
        raise ValueError(f"Unsupported RequestType: {request_type}")
    return handler(event)
