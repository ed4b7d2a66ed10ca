"""Compute stack - ECS cluster, shared ALB and the three Fargate services.

  backend  - API container (port 5000), routed on /api/*
  jobs     - background worker from the backend image, no load balancer
  frontend - web container (port 80), default route

Database endpoint and WebAuthn settings come from the parameter bridge;
cluster, service and ALB names are published back into it for the alarms
stack and operator scripts. Before the services are updated, a custom
resource verifies both image tags exist and are single-arch (linux/amd64).
"""
import logging

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_certificatemanager as acm,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_route53 as route53,
    aws_route53_targets as route53_targets,
    aws_s3 as s3,
    aws_secretsmanager as secretsmanager,
    aws_ssm as ssm,
    custom_resources as cr,
)

from stacks import parameter_names
from stacks.base_stack import BaseStack
from stacks.naming import ecs_log_group_name, rds_db_name
from stacks.parameter_bridge import publish_parameter, resolve_parameter
from stacks.vpc_stack import BACKEND_PORT, FRONTEND_PORT

logger = logging.getLogger(__name__)

IMAGE_GUARD_RESOURCE_VERSION = "1.0.0"
DATABASE_URL_TEMPLATE = "mysql+pymysql://${DB_USERNAME}:${DB_PASSWORD}@${DB_HOST}:${DB_PORT}/${DB_NAME}?charset=utf8mb4"


class EcsStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, vpc: ec2.IVpc,
                 alb_security_group: ec2.ISecurityGroup, ecs_security_group: ec2.ISecurityGroup,
                 bucket: s3.IBucket, db_secret: secretsmanager.ISecret,
                 app_user_secret: secretsmanager.ISecret,
                 backend_repository: ecr.IRepository, frontend_repository: ecr.IRepository,
                 lookups, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        is_dev = self.settings.is_dev
        sizing = self.profile.ecs
        self.vpc = vpc
        self.ecs_security_group = ecs_security_group

        self.cluster = ecs.Cluster(
            self,
            "Cluster",
            vpc=vpc,
            cluster_name=f"{self.prefix}-cluster",
            # Container Insights metrics are not worth their cost in dev
            container_insights=not is_dev,
            enable_fargate_capacity_providers=True,
        )

        self.alb = elbv2.ApplicationLoadBalancer(
            self,
            "LoadBalancer",
            vpc=vpc,
            internet_facing=True,
            security_group=alb_security_group,
            load_balancer_name=f"{self.prefix}-alb",
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )
        http_listener = self.alb.add_listener("HttpListener", port=80, open=True)
        certificate = acm.Certificate.from_certificate_arn(self, "Certificate", self._certificate_arn())
        https_listener = self.alb.add_listener("HttpsListener", port=443, certificates=[certificate], open=True)

        log_groups = {name: self._log_group(lookups, name) for name in ("backend", "frontend", "jobs")}

        task_role = iam.Role(self, "TaskRole", assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"))
        bucket.grant_read_write(task_role)
        db_secret.grant_read(task_role)
        secretsmanager.Secret.from_secret_name_v2(
            self, "ExternalApiKeys", f"{self.prefix}-external-api-keys").grant_read(task_role)
        task_role.add_to_policy(iam.PolicyStatement(actions=["ses:SendRawEmail", "ses:SendEmail"], resources=["*"]))

        jwt_secret = secretsmanager.Secret(
            self,
            "JwtSecret",
            secret_name=f"{self.prefix}-jwt-secret",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template="{}",
                generate_string_key="JWT_SECRET_KEY",
            ),
        )

        backend_tag = self.settings.backend_image_tag
        frontend_tag = self.settings.frontend_image_tag
        backend_image = ecs.ContainerImage.from_ecr_repository(backend_repository, backend_tag)
        frontend_image = ecs.ContainerImage.from_ecr_repository(frontend_repository, frontend_tag)

        app_environment = self._app_environment(bucket)
        app_secrets = self._app_secrets(app_user_secret, jwt_secret)
        service_subnets = self._service_subnets()
        web_capacity = [ecs.CapacityProviderStrategy(capacity_provider="FARGATE_SPOT" if is_dev else "FARGATE", weight=1)]

        backend_task = self._task_definition("BackendTaskDefinition", "backend", sizing.backend, task_role)
        backend_task.add_container(
            "flask",
            container_name="flask",
            image=backend_image,
            logging=ecs.LogDriver.aws_logs(stream_prefix="ecs", log_group=log_groups["backend"]),
            port_mappings=[ecs.PortMapping(container_port=BACKEND_PORT)],
            environment={**app_environment, "ENABLE_SCHEDULER": "false"},
            secrets=app_secrets,
            essential=True,
        )
        self.backend_service = self._service(
            "BackendService", "backend", backend_task, sizing.backend.desired_count, service_subnets,
            web_capacity, grace_seconds=sizing.backend_grace_seconds)

        job_task = self._task_definition("JobTaskDefinition", "job", sizing.jobs, task_role)
        job_task.add_container(
            "worker",
            container_name="worker",
            image=backend_image,
            logging=ecs.LogDriver.aws_logs(stream_prefix="jobs", log_group=log_groups["jobs"]),
            command=["python", "-m", "app.jobs.worker"],
            environment={**app_environment, "ENABLE_SCHEDULER": "true"},
            secrets=app_secrets,
            essential=True,
        )
        # The scheduler must not run on Spot capacity
        self.job_service = self._service(
            "JobService", "job", job_task, sizing.jobs.desired_count, service_subnets,
            [ecs.CapacityProviderStrategy(capacity_provider="FARGATE", weight=1)])

        if is_dev:
            self.migration_task = self._migration_task(backend_image, log_groups["backend"], app_user_secret, task_role)

        frontend_task = self._task_definition("FrontendTaskDefinition", "frontend", sizing.frontend, task_role)
        frontend_task.add_container(
            "react",
            container_name="react",
            image=frontend_image,
            logging=ecs.LogDriver.aws_logs(stream_prefix="ecs", log_group=log_groups["frontend"]),
            port_mappings=[ecs.PortMapping(container_port=FRONTEND_PORT)],
            essential=True,
        )
        self.frontend_service = self._service(
            "FrontendService", "frontend", frontend_task, sizing.frontend.desired_count, service_subnets,
            web_capacity, grace_seconds=sizing.frontend_grace_seconds)

        guard = self._image_guard(
            [(backend_repository, backend_tag, "Backend"), (frontend_repository, frontend_tag, "Frontend")])
        for service in (self.backend_service, self.job_service, self.frontend_service):
            service.node.add_dependency(guard)

        self._routing(http_listener, https_listener)
        self._autoscaling()

        if is_dev:
            self._business_hours()

        self._publish()

        cdk.CfnOutput(self, "LoadBalancerDnsName", value=self.alb.load_balancer_dns_name)
        cdk.CfnOutput(self, "ClusterName", value=self.cluster.cluster_name)

    def _certificate_arn(self) -> str:
        if self.settings.certificate_arn:
            return self.settings.certificate_arn
        cert_id = self.node.try_get_context("certId")
        if cert_id:
            return f"arn:{self.partition}:acm:{self.region}:{self.account}:certificate/{cert_id}"
        return resolve_parameter(self, parameter_names.acm_cert_arn(self.project, self.env_name))

    def _log_group(self, lookups, service: str) -> logs.ILogGroup:
        name = ecs_log_group_name(self.project, self.env_name, service)
        construct_id = f"{service.capitalize()}LogGroup"
        if self.settings.is_dev:
            # Create-if-missing and set retention without owning the group
            logs.LogRetention(self, f"{construct_id}Retention", log_group_name=name, retention=self.log_retention)
            return logs.LogGroup.from_log_group_name(self, construct_id, name)
        if lookups.log_group_exists(name):
            logger.info("Reusing log group %s", name)
            return logs.LogGroup.from_log_group_name(self, construct_id, name)
        return logs.LogGroup(self, construct_id, log_group_name=name, retention=self.log_retention)

    def _app_environment(self, bucket: s3.IBucket) -> dict:
        project, env = self.project, self.env_name
        return {
            "DB_HOST": resolve_parameter(self, parameter_names.rds_endpoint_address(project, env)),
            "DB_PORT": resolve_parameter(self, parameter_names.rds_endpoint_port(project, env)),
            "DB_NAME": rds_db_name(project, env),
            "DATABASE_URL": DATABASE_URL_TEMPLATE,
            "PYTHONPATH": "/app",
            "AWS_REGION": self.region,
            "SES_REGION": self.node.try_get_context("sesRegion") or self.region,
            "S3_BUCKET_NAME": bucket.bucket_name,
            "S3_REGION": self.region,
            "PORT": str(BACKEND_PORT),
            "APP_ENV": env,
            "WEBAUTHN_RP_ID": resolve_parameter(self, parameter_names.webauthn_rp_id(project, env)),
            "WEBAUTHN_ORIGIN": resolve_parameter(self, parameter_names.webauthn_origin(project, env)),
            "STRICT_WEBAUTHN_VERIFY": resolve_parameter(self, parameter_names.webauthn_strict_verify(project, env)),
        }

    def _app_secrets(self, app_user_secret: secretsmanager.ISecret, jwt_secret: secretsmanager.ISecret) -> dict:
        project, env = self.project, self.env_name

        def ssm_value(construct_id: str, key: str) -> ecs.Secret:
            parameter = ssm.StringParameter.from_string_parameter_name(self, construct_id, key)
            return ecs.Secret.from_ssm_parameter(parameter)

        return {
            "DB_USERNAME": ecs.Secret.from_secrets_manager(app_user_secret, "username"),
            "DB_PASSWORD": ecs.Secret.from_secrets_manager(app_user_secret, "password"),
            "SES_FROM_ADDRESS": ssm_value("SesFromAddress", parameter_names.ses_from_address(project, env)),
            "SES_SENDER_NAME": ssm_value("SesSenderName", parameter_names.ses_sender_name(project, env)),
            "MAIL_REPLY_TO_ADDRESS": ssm_value("MailReplyTo", parameter_names.mail_reply_to(project, env)),
            "JWT_SECRET_KEY": ecs.Secret.from_secrets_manager(jwt_secret, "JWT_SECRET_KEY"),
        }

    def _service_subnets(self) -> ec2.SubnetSelection:
        if self.settings.is_dev:
            # One public subnet with public IPs: no NAT gateway in dev
            public = self.vpc.select_subnets(subnet_type=ec2.SubnetType.PUBLIC).subnets
            return ec2.SubnetSelection(subnets=public[:1])
        return ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)

    def _task_definition(self, construct_id: str, family: str, size, task_role: iam.IRole) -> ecs.FargateTaskDefinition:
        return ecs.FargateTaskDefinition(
            self,
            construct_id,
            family=f"{self.prefix}-{family}",
            cpu=size.cpu,
            memory_limit_mib=size.memory_mib,
            runtime_platform=ecs.RuntimePlatform(cpu_architecture=ecs.CpuArchitecture.X86_64),
            task_role=task_role,
        )

    def _service(self, construct_id: str, name: str, task_definition: ecs.FargateTaskDefinition,
                 desired_count: int, subnets: ec2.SubnetSelection, capacity, grace_seconds=None) -> ecs.FargateService:
        return ecs.FargateService(
            self,
            construct_id,
            cluster=self.cluster,
            service_name=f"{self.prefix}-{name}-svc",
            task_definition=task_definition,
            desired_count=desired_count,
            security_groups=[self.ecs_security_group],
            circuit_breaker=ecs.DeploymentCircuitBreaker(rollback=True),
            enable_execute_command=True,
            assign_public_ip=self.settings.is_dev,
            min_healthy_percent=100,
            max_healthy_percent=200,
            health_check_grace_period=cdk.Duration.seconds(grace_seconds) if grace_seconds else None,
            vpc_subnets=subnets,
            capacity_provider_strategies=capacity,
        )

    def _migration_task(self, image: ecs.ContainerImage, log_group: logs.ILogGroup,
                        app_user_secret: secretsmanager.ISecret, task_role: iam.IRole) -> ecs.FargateTaskDefinition:
        """On-demand (RunTask) schema migration. Dev only; other environments migrate via ECS Exec."""
        task = ecs.FargateTaskDefinition(
            self,
            "MigrationTaskDefinition",
            family=f"{self.prefix}-migration",
            cpu=256,
            memory_limit_mib=512,
            runtime_platform=ecs.RuntimePlatform(cpu_architecture=ecs.CpuArchitecture.X86_64),
            task_role=task_role,
        )
        project, env = self.project, self.env_name
        task.add_container(
            "migrate",
            container_name="migrate",
            image=image,
            logging=ecs.LogDriver.aws_logs(stream_prefix="migration", log_group=log_group),
            command=["sh", "scripts/migrate.sh"],
            environment={
                "DB_HOST": resolve_parameter(self, parameter_names.rds_endpoint_address(project, env)),
                "DB_PORT": resolve_parameter(self, parameter_names.rds_endpoint_port(project, env)),
                "DB_NAME": rds_db_name(project, env),
                "AWS_REGION": self.region,
                "DATABASE_URL": DATABASE_URL_TEMPLATE,
            },
            secrets={
                "DB_USERNAME": ecs.Secret.from_secrets_manager(app_user_secret, "username"),
                "DB_PASSWORD": ecs.Secret.from_secrets_manager(app_user_secret, "password"),
            },
            essential=True,
        )
        return task

    def _image_guard(self, images) -> Construct:
        """Custom resources failing the deploy on missing or multi-arch image tags."""
        guard_function = self.python_function(
            "EcrValidateSingleArchFunction",
            asset="ecr_validate_single_arch",
            handler="index.lambda_handler",
            memory_size=128,
        )
        guard_function.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ecr:DescribeImages"],
                resources=[repository.repository_arn for repository, _, _ in images],
            )
        )
        provider = cr.Provider(self, "EcrValidateSingleArchProvider", on_event_handler=guard_function)

        guard = Construct(self, "ImageGuards")
        for repository, tag, label in images:
            cdk.CustomResource(
                guard,
                f"{label}ImageGuard",
                service_token=provider.service_token,
                properties={
                    "RepositoryName": repository.repository_name,
                    "ImageTag": tag,
                    "ResourceVersion": IMAGE_GUARD_RESOURCE_VERSION,
                },
            )
        return guard

    def _routing(self, http_listener: elbv2.ApplicationListener, https_listener: elbv2.ApplicationListener) -> None:
        health_check = dict(
            interval=cdk.Duration.seconds(30),
            healthy_threshold_count=2,
            unhealthy_threshold_count=5,
        )
        # Unnamed target groups so CloudFormation can replace them on immutable changes
        self.backend_target_group = elbv2.ApplicationTargetGroup(
            self,
            "BackendTargetGroup",
            vpc=self.vpc,
            port=BACKEND_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(path="/ping", **health_check),
        )
        self.frontend_target_group = elbv2.ApplicationTargetGroup(
            self,
            "FrontendTargetGroup",
            vpc=self.vpc,
            port=FRONTEND_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(path="/", **health_check),
        )
        self.backend_service.attach_to_application_target_group(self.backend_target_group)
        self.frontend_service.attach_to_application_target_group(self.frontend_target_group)

        http_listener.add_action(
            "RedirectToHttps",
            action=elbv2.ListenerAction.redirect(protocol="HTTPS", port="443", permanent=True),
        )
        https_listener.add_target_groups("DefaultFrontendHttps", target_groups=[self.frontend_target_group])
        https_listener.add_target_groups(
            "BackendRuleHttps",
            priority=10,
            conditions=[elbv2.ListenerCondition.path_patterns(["/api/*"])],
            target_groups=[self.backend_target_group],
        )

        zone_id = self.node.try_get_context("appHostedZoneId")
        zone_name = self.node.try_get_context("appHostedZoneName")
        record_name = (self.node.try_get_context(f"appRecordName{self.env_name.capitalize()}")
                       or self.node.try_get_context("appRecordName"))
        if zone_id and zone_name and record_name:
            zone = route53.HostedZone.from_hosted_zone_attributes(
                self, "AppZone", hosted_zone_id=zone_id, zone_name=zone_name)
            route53.ARecord(
                self,
                "AppRecord",
                zone=zone,
                record_name=record_name,
                target=route53.RecordTarget.from_alias(route53_targets.LoadBalancerTarget(self.alb)),
            )

    def _autoscaling(self) -> None:
        sizing = self.profile.ecs
        is_dev = self.settings.is_dev
        backend_scaling = self.backend_service.auto_scale_task_count(
            min_capacity=0 if is_dev else sizing.min.backend,
            max_capacity=sizing.max.backend,
        )
        backend_scaling.scale_on_cpu_utilization(
            "Cpu70", target_utilization_percent=70,
            scale_in_cooldown=cdk.Duration.seconds(300), scale_out_cooldown=cdk.Duration.seconds(300))
        backend_scaling.scale_on_memory_utilization(
            "Mem80", target_utilization_percent=80,
            scale_in_cooldown=cdk.Duration.seconds(300), scale_out_cooldown=cdk.Duration.seconds(300))

        frontend_scaling = self.frontend_service.auto_scale_task_count(
            min_capacity=0 if is_dev else sizing.min.frontend,
            max_capacity=sizing.max.frontend,
        )
        frontend_scaling.scale_on_cpu_utilization(
            "Cpu70", target_utilization_percent=70,
            scale_in_cooldown=cdk.Duration.seconds(300), scale_out_cooldown=cdk.Duration.seconds(180))

    def _business_hours(self) -> None:
        services = (self.frontend_service, self.backend_service, self.job_service)
        ecs_hours = self.python_function(
            "EcsHoursFunction",
            asset="business_hours",
            handler="ecs_hours.lambda_handler",
            timeout=cdk.Duration.minutes(2),
            environment={
                "CLUSTER_NAME": self.cluster.cluster_name,
                "FRONTEND_SERVICE_NAME": self.frontend_service.service_name,
                "BACKEND_SERVICE_NAME": self.backend_service.service_name,
                "JOB_SERVICE_NAME": self.job_service.service_name,
                "DESIRED_UP_COUNT": "1",
                "SCHEDULE_TIMEZONE": self.settings.schedule_timezone,
            },
        )
        ecs_hours.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ecs:UpdateService"],
                resources=[service.service_arn for service in services],
            )
        )
        self.business_hours_schedules("ecs", ecs_hours, start_action="up", stop_action="down")

    def _publish(self) -> None:
        project, env = self.project, self.env_name
        for construct_id, key, value, description in (
            ("EcsClusterNameParam", parameter_names.ecs_cluster_name(project, env),
             self.cluster.cluster_name, "ECS cluster name"),
            ("EcsBackendServiceNameParam", parameter_names.ecs_backend_service_name(project, env),
             self.backend_service.service_name, "Backend ECS service name"),
            ("EcsJobServiceNameParam", parameter_names.ecs_job_service_name(project, env),
             self.job_service.service_name, "Background job ECS service name"),
            ("EcsFrontendServiceNameParam", parameter_names.ecs_frontend_service_name(project, env),
             self.frontend_service.service_name, "Frontend ECS service name"),
            ("AlbFullNameParam", parameter_names.alb_full_name(project, env),
             self.alb.load_balancer_full_name, "ALB full name"),
        ):
            publish_parameter(self, construct_id, key, value, f"{description} exposed for cross-stack consumption.")
