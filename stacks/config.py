"""Per-environment sizing profiles and application settings.

ENV_PROFILES is a read-only table keyed by environment name. Unknown
environment names fall back to the dev profile (lowest cost).

AppSettings is resolved once in app.py from, in order: CDK context (-c key=value
or cdk.json), environment variable, computed default.
"""
import os
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("dev", "staging", "prod")
DEFAULT_ENVIRONMENT = "dev"


@dataclass(frozen=True)
class TaskSize:
    cpu: int
    memory_mib: int
    desired_count: int


@dataclass(frozen=True)
class ServiceCounts:
    frontend: int
    backend: int
    jobs: int


@dataclass(frozen=True)
class EcsProfile:
    frontend: TaskSize
    backend: TaskSize
    jobs: TaskSize
    min: ServiceCounts
    max: ServiceCounts
    frontend_grace_seconds: int
    backend_grace_seconds: int


@dataclass(frozen=True)
class RdsProfile:
    instance_class: str
    multi_az: bool
    backup_retention_days: int


@dataclass(frozen=True)
class EnvProfile:
    ecs: EcsProfile
    rds: RdsProfile
    logs_retention_days: int


ENV_PROFILES: Mapping[str, EnvProfile] = MappingProxyType({
    "dev": EnvProfile(
        ecs=EcsProfile(
            frontend=TaskSize(cpu=256, memory_mib=512, desired_count=1),
            backend=TaskSize(cpu=256, memory_mib=512, desired_count=1),
            jobs=TaskSize(cpu=256, memory_mib=512, desired_count=1),
            # Frontend/backend may scale to zero off-hours
            min=ServiceCounts(frontend=0, backend=0, jobs=1),
            max=ServiceCounts(frontend=2, backend=2, jobs=1),
            frontend_grace_seconds=120,
            backend_grace_seconds=300,
        ),
        rds=RdsProfile(instance_class="t4g.micro", multi_az=False, backup_retention_days=0),
        logs_retention_days=1,
    ),
    "staging": EnvProfile(
        ecs=EcsProfile(
            frontend=TaskSize(cpu=256, memory_mib=512, desired_count=1),
            backend=TaskSize(cpu=512, memory_mib=1024, desired_count=2),
            jobs=TaskSize(cpu=512, memory_mib=1024, desired_count=1),
            min=ServiceCounts(frontend=1, backend=2, jobs=1),
            max=ServiceCounts(frontend=3, backend=4, jobs=1),
            frontend_grace_seconds=120,
            backend_grace_seconds=300,
        ),
        rds=RdsProfile(instance_class="t3.small", multi_az=True, backup_retention_days=3),
        logs_retention_days=14,
    ),
    "prod": EnvProfile(
        ecs=EcsProfile(
            frontend=TaskSize(cpu=256, memory_mib=512, desired_count=1),
            backend=TaskSize(cpu=512, memory_mib=1024, desired_count=2),
            jobs=TaskSize(cpu=512, memory_mib=1024, desired_count=1),
            min=ServiceCounts(frontend=1, backend=2, jobs=1),
            max=ServiceCounts(frontend=6, backend=10, jobs=1),
            frontend_grace_seconds=120,
            backend_grace_seconds=300,
        ),
        rds=RdsProfile(instance_class="t3.small", multi_az=True, backup_retention_days=7),
        logs_retention_days=30,
    ),
})


def get_env_config(environment: str) -> EnvProfile:
    profile = ENV_PROFILES.get(environment)
    if profile is None:
        logger.warning("Unknown environment %r, using the %s profile", environment, DEFAULT_ENVIRONMENT)
        return ENV_PROFILES[DEFAULT_ENVIRONMENT]
    return profile


@dataclass(frozen=True)
class LogFilterSettings:
    """Which JSON fields the log subscription filters key on."""
    status_field: str = "http_status"
    type_field: str = "type"
    operation_type: str = "operation"
    error_status_min: int = 500
    error_status_max: int = 600
    operation_status_min: int = 200
    operation_status_max: int = 400

    def error_pattern(self) -> str:
        status = f"$.{self.status_field}"
        return f"{{ {status} >= {self.error_status_min} && {status} < {self.error_status_max} }}"

    def operation_pattern(self) -> str:
        status = f"$.{self.status_field}"
        return (
            f'{{ $.{self.type_field} = "{self.operation_type}" && '
            f"{status} >= {self.operation_status_min} && {status} < {self.operation_status_max} }}"
        )


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _split(value) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value if item)
    return tuple(item.strip() for item in str(value).split(",") if item.strip())


@dataclass(frozen=True)
class AppSettings:
    project: str
    environment: str
    account: Optional[str] = None
    region: str = "ap-northeast-3"
    schedule_timezone: str = "Asia/Tokyo"
    use_lookups: bool = True
    nat_gateways: Optional[int] = None
    reuse_existing_bucket: bool = False
    enable_bastion: bool = False
    bastion_hosted_zone_id: Optional[str] = None
    bastion_record_name: Optional[str] = None
    bastion_key_name: Optional[str] = None
    bastion_allowed_cidr: str = "0.0.0.0/0"
    certificate_arn: Optional[str] = None
    enable_waf: bool = False
    enable_alarms: bool = False
    alarm_emails: Tuple[str, ...] = ()
    alarm_topic_arn: Optional[str] = None
    slack_webhook_secret_name: Optional[str] = None
    enable_alb_5xx_alarm: bool = True
    rds_connections_warn_threshold: Optional[int] = None
    enable_ses: bool = False
    ses_domain: Optional[str] = None
    ses_mail_from: str = "ses"
    enable_logs_analytics: bool = True
    github_repository: Optional[str] = None
    github_branches: Tuple[str, ...] = ("main", "develop")
    backend_image_tag: str = "latest"
    frontend_image_tag: str = "latest"
    log_filters: LogFilterSettings = field(default_factory=LogFilterSettings)

    @property
    def profile(self) -> EnvProfile:
        return get_env_config(self.environment)

    @property
    def is_dev(self) -> bool:
        return self.environment == "dev"

    @property
    def prefix(self) -> str:
        return f"{self.project}-{self.environment}"

    def stack_id(self, name: str) -> str:
        return f"{self.prefix}-{name}"

    @classmethod
    def from_app(cls, app, environ: Optional[Mapping[str, str]] = None) -> "AppSettings":
        """Resolve settings from CDK context, then environment variables, then defaults."""
        environ = os.environ if environ is None else environ

        def get(context_key: str, env_key: Optional[str] = None, default=None):
            value = app.node.try_get_context(context_key)
            if value is not None and value != "":
                return value
            if env_key and environ.get(env_key):
                return environ[env_key]
            return default

        project = get("project", "PROJECT", "sample-app")
        environment = get("env", "ENV", DEFAULT_ENVIRONMENT)
        is_dev = environment == "dev"
        nat_gateways = get("natGateways", "NAT_GATEWAYS")
        connections_threshold = get("rdsConnectionsWarnThreshold", "RDS_CONNECTIONS_WARN_THRESHOLD")
        ses_domain = get("sesDomain", "SES_DOMAIN")

        settings = cls(
            project=project,
            environment=environment,
            account=get("account", "CDK_DEFAULT_ACCOUNT") or environ.get("AWS_ACCOUNT_ID"),
            region=get("region", "CDK_DEFAULT_REGION", "ap-northeast-3"),
            schedule_timezone=get("scheduleTimezone", "SCHEDULE_TIMEZONE", "Asia/Tokyo"),
            use_lookups=_truthy(get("useLookups", "USE_LOOKUPS", True)),
            nat_gateways=int(nat_gateways) if nat_gateways is not None else None,
            # Production keeps its existing bucket instead of creating one
            reuse_existing_bucket=_truthy(get("reuseExistingBucket", None, environment == "prod")),
            enable_bastion=_truthy(get("enableBastion", "ENABLE_BASTION", environment in ("dev", "prod"))),
            bastion_hosted_zone_id=get("bastionHostedZoneId", "BASTION_HOSTED_ZONE_ID"),
            bastion_record_name=get("bastionRecordName", "BASTION_RECORD_NAME"),
            bastion_key_name=get("bastionKeyName", "BASTION_KEY_NAME"),
            bastion_allowed_cidr=get("bastionAllowedCidr", "BASTION_ALLOWED_CIDR", "0.0.0.0/0"),
            certificate_arn=get("certificateArn", "CERTIFICATE_ARN"),
            enable_waf=_truthy(get("enableWaf", "ENABLE_WAF", not is_dev)),
            enable_alarms=_truthy(get("enableAlarms", "ENABLE_ALARMS", not is_dev)),
            alarm_emails=_split(get("alarmEmails", "ALARM_EMAILS")),
            alarm_topic_arn=get("alarmTopicArn", "ALARM_TOPIC_ARN"),
            slack_webhook_secret_name=get("slackWebhookSecretName", "SLACK_WEBHOOK_SECRET_NAME",
                                          f"{project}-slack-webhook-url"),
            enable_alb_5xx_alarm=_truthy(get("enableAlb5xxAlarm", "ENABLE_ALB_5XX_ALARM", True)),
            rds_connections_warn_threshold=int(connections_threshold) if connections_threshold else None,
            # SES is a dev-only convenience and needs a hosted domain
            enable_ses=is_dev and bool(ses_domain) and _truthy(get("sesEnable", "SES_ENABLE", False)),
            ses_domain=ses_domain,
            ses_mail_from=get("sesMailFrom", "SES_MAIL_FROM", "ses"),
            enable_logs_analytics=_truthy(get("enableLogsAnalytics", "ENABLE_LOGS_ANALYTICS", True)),
            github_repository=get("githubRepo", "GITHUB_REPOSITORY"),
            github_branches=_split(get("githubBranches", "GITHUB_BRANCHES", "main,develop")),
            backend_image_tag=get("backendImageTag", "BACKEND_IMAGE_TAG", "latest"),
            frontend_image_tag=get("frontendImageTag", "FRONTEND_IMAGE_TAG", "latest"),
            log_filters=LogFilterSettings(**(app.node.try_get_context("logFilters") or {})),
        )
        logger.info("Resolved settings for %s (region=%s, lookups=%s)",
                    settings.prefix, settings.region, settings.use_lookups)
        return settings
