"""RDS business-hours Lambda.

Invoked by EventBridge Scheduler with {"action": "start"} at the start of the
working day and {"action": "stop"} in the evening. Start is skipped on rest
days (weekends and holidays); stop always runs.

Environment variables (set by CDK):
  DB_INSTANCE_IDENTIFIER - the instance to start/stop
  SCHEDULE_TIMEZONE      - civil timezone used to decide the rest day
"""
import os
import logging

import boto3
from botocore.exceptions import ClientError

from rest_days import DEFAULT_TIMEZONE, local_now, should_skip

logger = logging.getLogger()
logger.setLevel(logging.INFO)

rds_client = boto3.client("rds")

DB_INSTANCE_IDENTIFIER = os.environ.get("DB_INSTANCE_IDENTIFIER", "")
SCHEDULE_TIMEZONE = os.environ.get("SCHEDULE_TIMEZONE", DEFAULT_TIMEZONE)

# Returned when the instance is already started/stopped (or transitioning)
ALREADY_IN_STATE_CODES = {"InvalidDBInstanceState", "InvalidDBInstanceStateFault"}


def _call(action: str) -> dict:
    operation = rds_client.start_db_instance if action == "start" else rds_client.stop_db_instance
    try:
        operation(DBInstanceIdentifier=DB_INSTANCE_IDENTIFIER)
    except ClientError as error:
        code = error.response["Error"]["Code"]
        if code in ALREADY_IN_STATE_CODES:
            logger.info("RDS %s: %s already in target state (%s)", action, DB_INSTANCE_IDENTIFIER, code)
            return {"action": action, "status": "ok", "changed": False}
        logger.warning("RDS %s failed for %s: %s", action, DB_INSTANCE_IDENTIFIER, error)
        return {"action": action, "status": "failed", "error": code}
    logger.info("RDS %s initiated for %s", action, DB_INSTANCE_IDENTIFIER)
    return {"action": action, "status": "ok", "changed": True}


def lambda_handler(event, _context):
    action = (event or {}).get("action")
    now = local_now(SCHEDULE_TIMEZONE)
    logger.info("RDS business hours: action=%s now=%s", action, now.isoformat())

    if action not in ("start", "stop"):
        logger.warning("Unknown action: %s", event)
        return {"action": action, "status": "ignored"}

    if should_skip(action, now.date()):
        logger.info("Rest day (%s). Skipping RDS start.", now.date())
        return {"action": action, "status": "skipped", "reason": "rest_day"}

    return _call(action)
