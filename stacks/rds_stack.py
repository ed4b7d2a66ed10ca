"""Database stack - MySQL 8.0 instance, credentials and user bootstrap.

Secrets ({prefix}-db-credentials, -db-appuser, -db-readonlyuser) are reused
when they already exist so a redeploy never rotates passwords behind the
application's back. A custom resource runs the db_init Lambda on every
create/update to converge the application and read-only users.

Publishes rds/* keys to the parameter bridge. In dev the instance follows
business hours (start 08:30 / stop 19:30, holiday-aware).
"""
import json
import logging

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    custom_resources as cr,
)

from stacks import parameter_names
from stacks.base_stack import BaseStack
from stacks.lookups import ResourceNotFoundError
from stacks.naming import rds_db_name
from stacks.parameter_bridge import publish_parameter, resolve_parameter

logger = logging.getLogger(__name__)

MYSQL_PORT = 3306
DB_INIT_RESOURCE_VERSION = "1.0.0"


class RdsStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, vpc: ec2.IVpc,
                 ecs_security_group: ec2.ISecurityGroup, lookups,
                 allow_bastion_access: bool = False, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        is_dev = self.settings.is_dev
        self.db_name = rds_db_name(self.project, self.env_name)
        allow_destroy = str(self.node.try_get_context("allowProdRdsDestroy") or "").lower() == "true"
        use_existing = str(self.node.try_get_context("useExistingRds") or "").lower() == "true"
        self.instance_identifier = self.node.try_get_context("existingRdsIdentifier") or f"{self.prefix}-db"

        if use_existing:
            self.db_security_groups = self._import_existing(lookups, ecs_security_group)
        else:
            security_group = ec2.SecurityGroup(
                self,
                "RdsSecurityGroup",
                vpc=vpc,
                description="RDS Security Group",
                allow_all_outbound=False,
            )
            security_group.add_ingress_rule(ecs_security_group, ec2.Port.tcp(MYSQL_PORT), "MySQL from ECS")
            security_group.add_egress_rule(
                ec2.Peer.ipv4(vpc.vpc_cidr_block), ec2.Port.all_traffic(), "Responses within VPC")
            self.db_security_groups = [security_group]

            self.db_secret = self._admin_secret(lookups)
            self.db_instance = self._create_instance(vpc, security_group, allow_destroy)

        if allow_bastion_access:
            bastion_sg_id = resolve_parameter(
                self, parameter_names.bastion_security_group_id(self.project, self.env_name))
            bastion_sg = ec2.SecurityGroup.from_security_group_id(self, "BastionSecurityGroup", bastion_sg_id)
            self.db_instance.connections.allow_from(bastion_sg, ec2.Port.tcp(MYSQL_PORT), "MySQL from bastion")

        enable_rotation = not is_dev and str(self.node.try_get_context("enableSecretRotation") or "true").lower() == "true"
        if enable_rotation and not use_existing:
            self.db_instance.add_rotation_single_user(automatically_after=cdk.Duration.days(30))

        self.app_user_secret = self._user_secret(lookups, "appuser", "AppUserSecret")
        self.read_only_user_secret = self._user_secret(lookups, "readonlyuser", "ReadOnlyUserSecret")

        self._db_init(vpc)
        self._publish()

        if is_dev:
            self._business_hours()

        cdk.CfnOutput(self, "DbEndpoint", value=self.db_instance.instance_endpoint.hostname)
        cdk.CfnOutput(self, "DbName", value=self.db_name)

    def _admin_secret(self, lookups) -> secretsmanager.ISecret:
        name = f"{self.prefix}-db-credentials"
        existing_arn = lookups.find_secret_arn(name)
        if existing_arn:
            logger.info("Reusing admin secret %s", name)
            return secretsmanager.Secret.from_secret_complete_arn(self, "DbCredentials", existing_arn)
        return rds.DatabaseSecret(self, "DbCredentials", secret_name=name, username="admin")

    def _user_secret(self, lookups, username: str, construct_id: str) -> secretsmanager.ISecret:
        name = f"{self.prefix}-db-{username}"
        existing_arn = lookups.find_secret_arn(name)
        if existing_arn:
            logger.info("Reusing %s secret %s", username, name)
            return secretsmanager.Secret.from_secret_complete_arn(self, construct_id, existing_arn)
        return secretsmanager.Secret(
            self,
            construct_id,
            secret_name=name,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": username}),
                generate_string_key="password",
                exclude_punctuation=True,
            ),
        )

    def _create_instance(self, vpc: ec2.IVpc, security_group: ec2.ISecurityGroup,
                         allow_destroy: bool) -> rds.DatabaseInstance:
        is_dev = self.settings.is_dev
        engine = rds.DatabaseInstanceEngine.mysql(version=rds.MysqlEngineVersion.VER_8_0)
        parameter_group = rds.ParameterGroup(
            self,
            "MysqlParameters",
            engine=engine,
            parameters={
                "character_set_server": "utf8mb4",
                "collation_server": "utf8mb4_unicode_ci",
            },
        )
        return rds.DatabaseInstance(
            self,
            "Database",
            engine=engine,
            instance_identifier=self.instance_identifier,
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            security_groups=[security_group],
            multi_az=self.profile.rds.multi_az,
            allocated_storage=20,
            storage_type=rds.StorageType.GP3,
            instance_type=ec2.InstanceType(self.profile.rds.instance_class),
            credentials=rds.Credentials.from_secret(self.db_secret),
            database_name=self.db_name,
            backup_retention=cdk.Duration.days(0 if is_dev else self.profile.rds.backup_retention_days),
            parameter_group=parameter_group,
            deletion_protection=not (is_dev or allow_destroy),
            removal_policy=cdk.RemovalPolicy.DESTROY if (is_dev or allow_destroy) else cdk.RemovalPolicy.RETAIN,
            publicly_accessible=False,
            cloudwatch_logs_exports=["error"],
        )

    def _import_existing(self, lookups, ecs_security_group: ec2.ISecurityGroup):
        """Reference an instance created outside this stack."""
        context = self.node.try_get_context
        endpoint = context("existingRdsEndpoint")
        port = context("existingRdsPort")
        sg_ids = [item.strip() for item in str(context("existingRdsSecurityGroupIds") or "").split(",") if item.strip()]

        if not endpoint or not sg_ids:
            try:
                attributes = lookups.rds_instance_attributes(self.instance_identifier)
            except ResourceNotFoundError as error:
                raise ValueError(
                    "useExistingRds=true but the RDS endpoint/security groups could not be resolved; "
                    "set -c existingRdsEndpoint=... and -c existingRdsSecurityGroupIds=..."
                ) from error
            endpoint = endpoint or attributes.endpoint
            port = port or attributes.port
            sg_ids = sg_ids or attributes.security_group_ids

        security_groups = [
            ec2.SecurityGroup.from_security_group_id(self, f"ImportedRdsSecurityGroup{index}", sg_id)
            for index, sg_id in enumerate(sg_ids)
        ]
        self.db_instance = rds.DatabaseInstance.from_database_instance_attributes(
            self,
            "Database",
            instance_identifier=self.instance_identifier,
            instance_endpoint_address=endpoint,
            port=int(port or MYSQL_PORT),
            security_groups=security_groups,
        )

        secret_arn = context("existingMasterSecretArn")
        if not secret_arn:
            secret_name = context("existingMasterSecretName") or f"{self.prefix}-db-credentials"
            secret_arn = lookups.find_secret_arn(secret_name)
            if not secret_arn:
                raise ValueError(
                    f"useExistingRds=true but admin secret {secret_name} was not found; "
                    "set -c existingMasterSecretArn=... or -c existingMasterSecretName=..."
                )
        self.db_secret = secretsmanager.Secret.from_secret_complete_arn(self, "DbCredentials", secret_arn)
        self.db_instance.connections.allow_from(ecs_security_group, ec2.Port.tcp(MYSQL_PORT), "MySQL from ECS")
        return security_groups

    def _db_init(self, vpc: ec2.IVpc) -> None:
        init_security_group = ec2.SecurityGroup(
            self,
            "DbInitSecurityGroup",
            vpc=vpc,
            description="DB init Lambda SG",
            allow_all_outbound=True,
        )
        for index, group in enumerate(self.db_security_groups):
            group.add_ingress_rule(init_security_group, ec2.Port.tcp(MYSQL_PORT), f"MySQL from DB init Lambda ({index})")

        subnet_type = ec2.SubnetType.PRIVATE_ISOLATED if self.settings.is_dev else ec2.SubnetType.PRIVATE_WITH_EGRESS
        db_init = self.python_function(
            "DbInitFunction",
            asset="db_init",
            handler="index.lambda_handler",
            timeout=cdk.Duration.minutes(5),
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=subnet_type),
            security_groups=[init_security_group],
            environment={
                "DB_HOST": self.db_instance.instance_endpoint.hostname,
                "DB_PORT": cdk.Token.as_string(self.db_instance.instance_endpoint.port),
                "DB_NAME": self.db_name,
                "MASTER_SECRET_ARN": self.db_secret.secret_arn,
                "APPUSER_SECRET_ARN": self.app_user_secret.secret_arn,
                "READONLY_SECRET_ARN": self.read_only_user_secret.secret_arn,
            },
        )
        for secret in (self.db_secret, self.app_user_secret, self.read_only_user_secret):
            secret.grant_read(db_init)

        provider = cr.Provider(self, "DbInitProvider", on_event_handler=db_init)
        init_resource = cdk.CustomResource(
            self,
            "DbInit",
            service_token=provider.service_token,
            properties={"ResourceVersion": DB_INIT_RESOURCE_VERSION},
        )
        init_resource.node.add_dependency(self.db_instance)

    def _publish(self) -> None:
        project, env = self.project, self.env_name
        values = [
            ("RdsSecurityGroupIdParam", parameter_names.rds_security_group_id(project, env),
             self.db_security_groups[0].security_group_id if self.db_security_groups else None),
            ("RdsEndpointAddressParam", parameter_names.rds_endpoint_address(project, env),
             self.db_instance.instance_endpoint.hostname),
            ("RdsEndpointPortParam", parameter_names.rds_endpoint_port(project, env),
             cdk.Token.as_string(self.db_instance.instance_endpoint.port)),
            ("RdsInstanceIdentifierParam", parameter_names.rds_instance_identifier(project, env),
             self.db_instance.instance_identifier),
        ]
        for construct_id, key, value in values:
            if value is None:
                continue
            publish_parameter(self, construct_id, key, value,
                              f"RDS {key.rsplit('/', 1)[-1]} exposed for cross-stack consumption.")

    def _business_hours(self) -> None:
        rds_hours = self.python_function(
            "RdsHoursFunction",
            asset="business_hours",
            handler="rds_hours.lambda_handler",
            timeout=cdk.Duration.minutes(2),
            environment={
                "DB_INSTANCE_IDENTIFIER": self.db_instance.instance_identifier,
                "SCHEDULE_TIMEZONE": self.settings.schedule_timezone,
            },
        )
        rds_hours.add_to_role_policy(
            iam.PolicyStatement(
                actions=["rds:StartDBInstance", "rds:StopDBInstance"],
                resources=[self.db_instance.instance_arn],
            )
        )
        self.business_hours_schedules("rds", rds_hours)

        logs.LogRetention(
            self,
            "RdsErrorLogRetention",
            log_group_name=f"/aws/rds/instance/{self.db_instance.instance_identifier}/error",
            retention=self.log_retention,
        )


