"""Slack notifier Lambda.

Subscribed to the alarms SNS topic. Each record carries a CloudWatch alarm
state change, which is posted to a Slack incoming webhook as a colored
attachment. The webhook URL lives in Secrets Manager ({"url": "..."}) and is
read once per container.
"""
import os
import json
import logging

import boto3
import requests

logger = logging.getLogger()
logger.setLevel(logging.INFO)

secrets_client = boto3.client("secretsmanager")

SLACK_WEBHOOK_SECRET_ARN = os.environ.get("SLACK_WEBHOOK_SECRET_ARN", "")
REQUEST_TIMEOUT_SECONDS = 10

_webhook_url = None


def get_webhook_url() -> str:
    global _webhook_url
    if _webhook_url:
        return _webhook_url
    if not SLACK_WEBHOOK_SECRET_ARN:
        raise RuntimeError("SLACK_WEBHOOK_SECRET_ARN environment variable not set.")
    secret = secrets_client.get_secret_value(SecretId=SLACK_WEBHOOK_SECRET_ARN)
    url = json.loads(secret.get("SecretString") or "{}").get("url")
    if not url:
        raise RuntimeError("Slack webhook URL not found in secret.")
    _webhook_url = url
    return _webhook_url


def build_message(alarm: dict) -> dict:
    """Render one CloudWatch alarm notification as a Slack payload."""
    new_state = alarm.get("NewStateValue")
    is_ok = new_state == "OK"
    state = "OK" if is_ok else "ALARM"
    emoji = ":white_check_mark:" if is_ok else ":warning:"

    return {
        "attachments": [{
            "color": "good" if is_ok else "danger",
            "blocks": [
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"{emoji} *{state}: {alarm.get('AlarmName')}*"},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Description:*\n{alarm.get('AlarmDescription')}"},
                        {
                            "type": "mrkdwn",
                            "text": f"*State Change:*\n{alarm.get('OldStateValue')} -> {new_state}",
                        },
                    ],
                },
                {
                    "type": "context",
                    "elements": [{"type": "mrkdwn", "text": f"*Reason:*\n{alarm.get('NewStateReason')}"}],
                },
            ],
        }],
    }


def post(url: str, payload: dict) -> None:
    response = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT_SECONDS)
    response.raise_for_status()


def lambda_handler(event, _context):
    url = get_webhook_url()
    records = event.get("Records", [])
    for record in records:
        alarm = json.loads(record["Sns"]["Message"])
        logger.info("Forwarding %s -> %s for %s",
                    alarm.get("OldStateValue"), alarm.get("NewStateValue"), alarm.get("AlarmName"))
        post(url, build_message(alarm))
    return {"posted": len(records)}
