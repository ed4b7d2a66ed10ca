"""Deterministic resource names derived from (project, environment)."""
import re

from aws_cdk import aws_logs as logs

MAX_DB_NAME_LENGTH = 64


def rds_db_name(project: str, environment: str) -> str:
    """MySQL-safe database name: lowercase letters, digits and underscores."""
    cleaned = re.sub(r"[^a-z0-9_]", "_", f"{project}_db_{environment}".lower())
    cleaned = re.sub(r"_+", "_", cleaned)
    if not re.match(r"[a-z]", cleaned):
        cleaned = f"db_{cleaned}"
    cleaned = cleaned.strip("_")
    return cleaned[:MAX_DB_NAME_LENGTH]


def glue_db_name(project: str, environment: str) -> str:
    safe_project = re.sub(r"[^A-Za-z0-9_]", "_", project).lower()
    return f"{safe_project}_{environment}_logs"


def choose_retention(days: int) -> logs.RetentionDays:
    """Map profile log retention days onto a CloudWatch retention (capped at one month)."""
    if days <= 1:
        return logs.RetentionDays.ONE_DAY
    if days <= 7:
        return logs.RetentionDays.ONE_WEEK
    if days <= 14:
        return logs.RetentionDays.TWO_WEEKS
    return logs.RetentionDays.ONE_MONTH


def ecs_log_group_name(project: str, environment: str, service: str) -> str:
    return f"/ecs/{project}-{environment}/{service}"
