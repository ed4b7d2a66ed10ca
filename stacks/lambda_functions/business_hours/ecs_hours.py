"""ECS business-hours Lambda.

{"action": "up"} sets every managed service to DESIRED_UP_COUNT tasks,
{"action": "down"} sets them to zero. Scale-up is skipped on rest days.
"""
import os
import logging

import boto3
from botocore.exceptions import ClientError

from rest_days import DEFAULT_TIMEZONE, local_now, should_skip

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ecs_client = boto3.client("ecs")

CLUSTER_NAME = os.environ.get("CLUSTER_NAME", "")
SERVICE_NAMES = [
    name
    for name in (
        os.environ.get("FRONTEND_SERVICE_NAME", ""),
        os.environ.get("BACKEND_SERVICE_NAME", ""),
        os.environ.get("JOB_SERVICE_NAME", ""),
    )
    if name
]
DESIRED_UP_COUNT = int(os.environ.get("DESIRED_UP_COUNT", "1"))
SCHEDULE_TIMEZONE = os.environ.get("SCHEDULE_TIMEZONE", DEFAULT_TIMEZONE)


def scale_services(desired_count: int) -> dict:
    """Set desired_count on each service; failures are collected, not raised."""
    failed = {}
    for service in SERVICE_NAMES:
        try:
            ecs_client.update_service(cluster=CLUSTER_NAME, service=service, desiredCount=desired_count)
            logger.info("Service %s/%s desiredCount=%d", CLUSTER_NAME, service, desired_count)
        except ClientError as error:
            code = error.response["Error"]["Code"]
            logger.warning("UpdateService failed for %s: %s", service, error)
            failed[service] = code
    return failed


def lambda_handler(event, _context):
    action = (event or {}).get("action")
    now = local_now(SCHEDULE_TIMEZONE)
    logger.info("ECS business hours: action=%s now=%s", action, now.isoformat())

    if action == "up":
        if should_skip(action, now.date()):
            logger.info("Rest day (%s). Skipping scale up.", now.date())
            return {"action": action, "status": "skipped", "reason": "rest_day"}
        desired = DESIRED_UP_COUNT
    elif action == "down":
        desired = 0
    else:
        logger.warning("Unknown action: %s", event)
        return {"action": action, "status": "ignored"}

    failed = scale_services(desired)
    result = {
        "action": action,
        "status": "failed" if failed else "ok",
        "desired_count": desired,
        "services": SERVICE_NAMES,
    }
    if failed:
        result["errors"] = failed
    return result
