"""Shared stack base: common tags and helpers every stack uses."""
import json
import os
from datetime import date
from typing import Dict, Optional

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_scheduler as scheduler,
)

from stacks.config import AppSettings
from stacks.naming import choose_retention

LAMBDA_ROOT = os.path.join(os.path.dirname(__file__), "lambda_functions")

# Weekday business hours (civil time of the schedule timezone)
BUSINESS_START_CRON = "cron(30 8 ? * MON-FRI *)"
BUSINESS_STOP_CRON = "cron(30 19 ? * MON-FRI *)"


class BaseStack(cdk.Stack):

    def __init__(self, scope: Construct, construct_id: str, settings: AppSettings, **kwargs) -> None:
        kwargs.setdefault("env", cdk.Environment(account=settings.account, region=settings.region))
        super().__init__(scope, construct_id, **kwargs)
        self.settings = settings
        self.project = settings.project
        self.env_name = settings.environment
        self.prefix = settings.prefix
        self.profile = settings.profile
        self.log_retention = choose_retention(self.profile.logs_retention_days)
        self._apply_common_tags()

    def _apply_common_tags(self) -> None:
        tags = cdk.Tags.of(self)
        tags.add("Project", self.prefix)
        tags.add("Environment", self.env_name)
        tags.add("Owner", "development-team")
        tags.add("CostCenter", "engineering")
        tags.add("ManagedBy", "aws-cdk")
        tags.add("CreatedDate", date.today().isoformat())

    def python_function(self, construct_id: str, asset: str, handler: str,
                        environment: Optional[Dict[str, str]] = None,
                        timeout: cdk.Duration = cdk.Duration.minutes(1),
                        memory_size: int = 256, **kwargs) -> lambda_.Function:
        """Python Lambda from stacks/lambda_functions/<asset>.

        requirements.txt in the asset directory is installed at synth time
        inside the Lambda build image.
        """
        runtime = lambda_.Runtime.PYTHON_3_12
        log_group = logs.LogGroup(
            self,
            f"{construct_id}-logs",
            retention=self.log_retention,
            removal_policy=cdk.RemovalPolicy.DESTROY,
        )
        return lambda_.Function(
            self,
            construct_id,
            runtime=runtime,
            handler=handler,
            code=lambda_.Code.from_asset(
                os.path.join(LAMBDA_ROOT, asset),
                bundling=cdk.BundlingOptions(
                    image=runtime.bundling_image,
                    command=[
                        "bash", "-c",
                        "pip install -r requirements.txt -t /asset-output && cp -au . /asset-output",
                    ],
                ),
            ),
            timeout=timeout,
            memory_size=memory_size,
            environment=environment or {},
            log_group=log_group,
            **kwargs,
        )

    def business_hours_schedules(self, name: str, target: lambda_.IFunction,
                                 start_action: str = "start", stop_action: str = "stop") -> None:
        """Weekday start/stop EventBridge Scheduler entries invoking `target`.

        Rest days (weekends, holidays) are decided inside the Lambda, so the
        cron itself only filters to MON-FRI.
        """
        role = iam.Role(
            self,
            f"{name}-scheduler-role",
            assumed_by=iam.ServicePrincipal("scheduler.amazonaws.com"),
        )
        role.add_to_policy(iam.PolicyStatement(actions=["lambda:InvokeFunction"], resources=[target.function_arn]))

        timezone = self.settings.schedule_timezone
        for action, expression, label in (
            (start_action, BUSINESS_START_CRON, "08:30"),
            (stop_action, BUSINESS_STOP_CRON, "19:30"),
        ):
            scheduler.CfnSchedule(
                self,
                f"{name}-{action}-schedule",
                flexible_time_window=scheduler.CfnSchedule.FlexibleTimeWindowProperty(mode="OFF"),
                schedule_expression=expression,
                schedule_expression_timezone=timezone,
                target=scheduler.CfnSchedule.TargetProperty(
                    arn=target.function_arn,
                    role_arn=role.role_arn,
                    input=json.dumps({"action": action}),
                ),
                description=f"{action} {name} at {label} {timezone} (holiday-aware)",
            )
