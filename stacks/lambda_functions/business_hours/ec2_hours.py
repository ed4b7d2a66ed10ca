"""Bastion EC2 business-hours Lambda.

Triggered by:
  1. EventBridge Scheduler ({"action": "start"} / {"action": "stop"}) on weekdays.
  2. An EventBridge rule when the instance enters the "running" state
     ({"action": "start"}), so DNS follows manual starts too.

On start the instance is started (unless it is a rest day), then the Lambda
waits for a public IP and UPSERTs the Route53 A record. DNS problems are
logged and never undo the start.

Environment variables (set by CDK):
  INSTANCE_ID                 - bastion instance id
  HOSTED_ZONE_ID, RECORD_NAME - optional; DNS update is skipped when either is empty
  DNS_POLL_ATTEMPTS           - default 20
  DNS_POLL_INTERVAL_SECONDS   - default 15
"""
import os
import time
import logging

import boto3
from botocore.exceptions import ClientError

from rest_days import DEFAULT_TIMEZONE, is_rest_day, local_now

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ec2_client = boto3.client("ec2")
route53_client = boto3.client("route53")

INSTANCE_ID = os.environ.get("INSTANCE_ID", "")
HOSTED_ZONE_ID = os.environ.get("HOSTED_ZONE_ID", "")
RECORD_NAME = os.environ.get("RECORD_NAME", "")
DNS_POLL_ATTEMPTS = int(os.environ.get("DNS_POLL_ATTEMPTS", "20"))
DNS_POLL_INTERVAL_SECONDS = int(os.environ.get("DNS_POLL_INTERVAL_SECONDS", "15"))
SCHEDULE_TIMEZONE = os.environ.get("SCHEDULE_TIMEZONE", DEFAULT_TIMEZONE)

RUNNING_STATES = {"running", "pending"}


def describe_instance():
    """Return (state, public_ip) for the bastion instance."""
    response = ec2_client.describe_instances(InstanceIds=[INSTANCE_ID])
    reservations = response.get("Reservations") or [{}]
    instances = reservations[0].get("Instances") or [{}]
    instance = instances[0]
    return instance.get("State", {}).get("Name"), instance.get("PublicIpAddress")


def upsert_dns(ip: str) -> None:
    route53_client.change_resource_record_sets(
        HostedZoneId=HOSTED_ZONE_ID,
        ChangeBatch={
            "Comment": "Updated by ec2-business-hours lambda",
            "Changes": [{
                "Action": "UPSERT",
                "ResourceRecordSet": {
                    "Name": RECORD_NAME,
                    "Type": "A",
                    "TTL": 60,
                    "ResourceRecords": [{"Value": ip}],
                },
            }],
        },
    )
    logger.info("Route53 A record upserted: %s -> %s", RECORD_NAME, ip)


def wait_and_update_dns() -> bool:
    """Poll for a public IP and point the record at it. Never raises."""
    for attempt in range(1, DNS_POLL_ATTEMPTS + 1):
        if attempt > 1:
            time.sleep(DNS_POLL_INTERVAL_SECONDS)
        try:
            state, ip = describe_instance()
        except ClientError as error:
            logger.warning("DescribeInstances failed (attempt %d/%d): %s", attempt, DNS_POLL_ATTEMPTS, error)
            continue
        logger.info("Check %d/%d: state=%s, ip=%s", attempt, DNS_POLL_ATTEMPTS, state, ip)
        if not ip:
            continue
        try:
            upsert_dns(ip)
        except ClientError as error:
            logger.error("Route53 update failed for %s: %s", RECORD_NAME, error)
            return False
        return True
    logger.error("No public IP after %d attempts; DNS not updated.", DNS_POLL_ATTEMPTS)
    return False


def start(today) -> dict:
    try:
        state, ip = describe_instance()
    except ClientError as error:
        logger.warning("DescribeInstances failed for %s: %s", INSTANCE_ID, error)
        return {"action": "start", "status": "failed", "error": error.response["Error"]["Code"]}
    logger.info("Current state=%s, ip=%s", state, ip)
    already_running = state in RUNNING_STATES
    rest_day = is_rest_day(today)

    if rest_day and not already_running:
        logger.info("Rest day (%s). Instance state=%s; skipping StartInstances.", today, state)
        return {"action": "start", "status": "skipped", "reason": "rest_day"}

    result = {"action": "start", "status": "ok", "started": False}
    if rest_day:
        # Started manually; only keep DNS in sync
        result.update(status="skipped", reason="rest_day")
    elif not already_running:
        try:
            ec2_client.start_instances(InstanceIds=[INSTANCE_ID])
            result["started"] = True
            logger.info("EC2 start initiated for %s", INSTANCE_ID)
        except ClientError as error:
            code = error.response["Error"]["Code"]
            if code != "IncorrectInstanceState":
                logger.warning("StartInstances error for %s: %s", INSTANCE_ID, error)
                return {"action": "start", "status": "failed", "error": code}
            logger.info("Instance %s already starting", INSTANCE_ID)

    if HOSTED_ZONE_ID and RECORD_NAME:
        result["dns_updated"] = wait_and_update_dns()
    return result


def stop() -> dict:
    try:
        ec2_client.stop_instances(InstanceIds=[INSTANCE_ID])
    except ClientError as error:
        code = error.response["Error"]["Code"]
        if code == "IncorrectInstanceState":
            logger.info("Instance %s already stopping/stopped", INSTANCE_ID)
            return {"action": "stop", "status": "ok", "changed": False}
        logger.warning("StopInstances error for %s: %s", INSTANCE_ID, error)
        return {"action": "stop", "status": "failed", "error": code}
    logger.info("EC2 stop initiated for %s", INSTANCE_ID)
    return {"action": "stop", "status": "ok", "changed": True}


def lambda_handler(event, _context):
    action = (event or {}).get("action")
    now = local_now(SCHEDULE_TIMEZONE)
    logger.info("EC2 business hours: action=%s now=%s", action, now.isoformat())

    if action == "start":
        return start(now.date())
    if action == "stop":
        return stop()
    logger.warning("Unknown action: %s", event)
    return {"action": action, "status": "ignored"}
