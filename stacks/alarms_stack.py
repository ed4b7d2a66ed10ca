"""Alarms stack - CloudWatch alarms for ECS, ALB and RDS.

Every dimension (cluster, services, ALB, DB instance) is resolved from the
parameter bridge, so this stack never references the compute or database
stacks directly and can be deployed or destroyed on its own.

Notifications go to an email SNS topic (or an existing topic) and, when a
Slack webhook secret is configured, to a second topic feeding the Slack
notifier Lambda. Alarms notify on both ALARM and OK transitions.
"""
from typing import Optional, Sequence

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cloudwatch_actions,
    aws_secretsmanager as secretsmanager,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
)

from stacks import parameter_names
from stacks.base_stack import BaseStack
from stacks.parameter_bridge import resolve_parameter

GREATER = cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD
LESS = cloudwatch.ComparisonOperator.LESS_THAN_THRESHOLD


class AlarmsStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        settings = self.settings
        project, env = self.project, self.env_name

        cluster_name = resolve_parameter(self, parameter_names.ecs_cluster_name(project, env))
        services = {
            "backend": resolve_parameter(self, parameter_names.ecs_backend_service_name(project, env)),
            "frontend": resolve_parameter(self, parameter_names.ecs_frontend_service_name(project, env)),
            "job": resolve_parameter(self, parameter_names.ecs_job_service_name(project, env)),
        }
        alb_full_name = resolve_parameter(self, parameter_names.alb_full_name(project, env))
        db_identifier = resolve_parameter(self, parameter_names.rds_instance_identifier(project, env))

        self.topics = [self._email_topic(settings.alarm_topic_arn, settings.alarm_emails)]
        if settings.slack_webhook_secret_name:
            self.topics.append(self._slack_topic(settings.slack_webhook_secret_name))

        for service, service_name in services.items():
            dimensions = {"ClusterName": cluster_name, "ServiceName": service_name}
            self.alarm(f"{service}-cpu-critical", self.metric("AWS/ECS", "CPUUtilization", dimensions),
                       GREATER, 80, 5, f"{service.capitalize()} ECS CPU > 80% for 5 minutes")
            self.alarm(f"{service}-mem-critical", self.metric("AWS/ECS", "MemoryUtilization", dimensions),
                       GREATER, 90, 5, f"{service.capitalize()} ECS memory > 90% for 5 minutes")

        self.alarm(
            "job-running-count-critical",
            self.metric("AWS/ECS", "RunningTaskCount",
                        {"ClusterName": cluster_name, "ServiceName": services["job"]}, statistic="Minimum"),
            LESS, 0.5, 1, "Job ECS running task count dropped below 1",
            treat_missing_data=cloudwatch.TreatMissingData.BREACHING,
        )

        alb = {"LoadBalancer": alb_full_name}
        if settings.enable_alb_5xx_alarm:
            self.alarm(
                "alb-5xx-critical",
                self.metric("AWS/ApplicationELB", "HTTPCode_Target_5XX_Count", alb, statistic="Sum"),
                GREATER, 0, 1, "Target 5xx errors reported by ALB > 0 in 1 minute",
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            )

        rds_cpu = self.metric("AWS/RDS", "CPUUtilization", {"DBInstanceIdentifier": db_identifier})
        self.alarm("rds-cpu-critical", rds_cpu, GREATER, 80, 10, "RDS CPU > 80% for 10 minutes")
        self.alarm("rds-cpu-warning", rds_cpu, GREATER, 70, 3, "RDS CPU > 70% for 3 minutes")

        self.alarm("alb-rt-warning", self.metric("AWS/ApplicationELB", "TargetResponseTime", alb),
                   GREATER, 2, 5, "ALB target response time > 2 seconds")

        threshold = settings.rds_connections_warn_threshold
        if threshold and threshold > 0:
            self.alarm(
                "rds-connections-warning",
                self.metric("AWS/RDS", "DatabaseConnections", {"DBInstanceIdentifier": db_identifier}),
                GREATER, threshold, 5, f"RDS connections > {threshold} (warning)",
            )

    def _email_topic(self, topic_arn: Optional[str], emails: Sequence[str]) -> sns.ITopic:
        if topic_arn:
            return sns.Topic.from_topic_arn(self, "AlarmTopic", topic_arn)
        topic = sns.Topic(self, "AlarmTopic", topic_name=f"{self.prefix}-alarms")
        for email in emails:
            topic.add_subscription(subscriptions.EmailSubscription(email))
        return topic

    def _slack_topic(self, secret_name: str) -> sns.Topic:
        topic = sns.Topic(self, "SlackAlarmTopic", topic_name=f"{self.prefix}-slack-alarms")
        secret = secretsmanager.Secret.from_secret_name_v2(self, "SlackWebhookSecret", secret_name)
        notifier = self.python_function(
            "SlackNotifierFunction",
            asset="slack_notifier",
            handler="index.lambda_handler",
            timeout=cdk.Duration.seconds(30),
            environment={"SLACK_WEBHOOK_SECRET_ARN": secret.secret_arn},
        )
        secret.grant_read(notifier)
        topic.add_subscription(subscriptions.LambdaSubscription(notifier))
        return topic

    def metric(self, namespace: str, metric_name: str, dimensions: dict,
               statistic: str = "Average") -> cloudwatch.Metric:
        return cloudwatch.Metric(
            namespace=namespace,
            metric_name=metric_name,
            dimensions_map=dimensions,
            period=cdk.Duration.minutes(1),
            statistic=statistic,
        )

    def alarm(self, suffix: str, metric: cloudwatch.IMetric, comparison, threshold: float,
              evaluation_periods: int, description: str,
              treat_missing_data=cloudwatch.TreatMissingData.IGNORE) -> cloudwatch.Alarm:
        name = f"{self.prefix}-{suffix}"
        alarm = cloudwatch.Alarm(
            self,
            name,
            alarm_name=name,
            metric=metric,
            comparison_operator=comparison,
            threshold=threshold,
            evaluation_periods=evaluation_periods,
            treat_missing_data=treat_missing_data,
            alarm_description=description,
        )
        for topic in self.topics:
            alarm.add_alarm_action(cloudwatch_actions.SnsAction(topic))
            alarm.add_ok_action(cloudwatch_actions.SnsAction(topic))
        return alarm
