"""Bastion stack - SSH jump host for database access.

The bastion security group id is published to the parameter bridge so the
RDS stack can admit it without a CloudFormation export. The SSH host key is
persisted in Secrets Manager so replacing the instance does not change its
fingerprint.

The ec2_hours Lambda starts/stops the instance on weekdays in dev and, on
every transition to "running" (scheduled or manual), points the optional
Route53 record at the new public IP.
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_ec2 as ec2,
    aws_events as events,
    aws_events_targets as events_targets,
    aws_iam as iam,
    aws_route53 as route53,
)

from stacks import parameter_names
from stacks.base_stack import BaseStack
from stacks.parameter_bridge import publish_parameter

HOST_KEY_USER_DATA = """\
set -euo pipefail
TOKEN=$(curl -s -X PUT http://169.254.169.254/latest/api/token -H "X-aws-ec2-metadata-token-ttl-seconds: 60")
REGION=$(curl -s -H "X-aws-ec2-metadata-token: $TOKEN" http://169.254.169.254/latest/meta-data/placement/region)
SECRET_ID={secret_id}
KEY_FILE=/etc/ssh/ssh_host_ed25519_key
EXISTING=$(aws secretsmanager get-secret-value --secret-id "$SECRET_ID" --query SecretString --output text --region "$REGION" 2>/dev/null || echo "__NO_SECRET__")
if [ "$EXISTING" = "__NO_SECRET__" ] || [ -z "$EXISTING" ] || [ "$EXISTING" = "None" ]; then
  ssh-keygen -t ed25519 -f "$KEY_FILE" -N "" -q <<< y
  chmod 600 "$KEY_FILE"
  KEY=$(cat "$KEY_FILE")
  aws secretsmanager create-secret --name "$SECRET_ID" --secret-string "$KEY" --region "$REGION" >/dev/null 2>&1 \\
    || aws secretsmanager put-secret-value --secret-id "$SECRET_ID" --secret-string "$KEY" --region "$REGION" >/dev/null
else
  printf "%s\\n" "$EXISTING" > "$KEY_FILE"
  chmod 600 "$KEY_FILE"
  ssh-keygen -y -f "$KEY_FILE" > "$KEY_FILE.pub"
fi
grep -q "HostKey $KEY_FILE" /etc/ssh/sshd_config || echo "HostKey $KEY_FILE" >> /etc/ssh/sshd_config
systemctl restart sshd
"""


class BastionStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, vpc: ec2.IVpc, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        settings = self.settings

        instance_type = self.node.try_get_context("bastionInstanceType") or "t4g.nano"
        key_name = settings.bastion_key_name or (f"{self.prefix}-bastion" if settings.is_dev else None)
        hosted_zone_id = settings.bastion_hosted_zone_id
        record_name = (self.node.try_get_context(f"bastionRecordName{self.env_name.capitalize()}")
                       or settings.bastion_record_name)
        # A static record is enough when the EIP is managed here; the Lambda
        # only updates DNS when the record lives outside this stack.
        manage_dns_in_stack = bool(hosted_zone_id and record_name) and not self.node.try_get_context("bastionDynamicDns")

        self.security_group = ec2.SecurityGroup(
            self,
            "BastionSecurityGroup",
            vpc=vpc,
            description="Bastion host SG (SSH in, allow outbound)",
            allow_all_outbound=True,
        )
        self.security_group.add_ingress_rule(
            ec2.Peer.ipv4(settings.bastion_allowed_cidr), ec2.Port.tcp(22), "SSH")
        publish_parameter(
            self,
            "BastionSecurityGroupIdParam",
            parameter_names.bastion_security_group_id(self.project, self.env_name),
            self.security_group.security_group_id,
            "Bastion security group ID exposed for cross-stack consumption.",
        )

        cpu_type = ec2.AmazonLinuxCpuType.ARM_64 if "g." in instance_type else ec2.AmazonLinuxCpuType.X86_64
        self.instance = ec2.Instance(
            self,
            "BastionInstance",
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            instance_type=ec2.InstanceType(instance_type),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(cpu_type=cpu_type),
            security_group=self.security_group,
            key_pair=ec2.KeyPair.from_key_pair_name(self, "BastionKeyPair", key_name) if key_name else None,
            ssm_session_permissions=True,
        )
        cdk.Tags.of(self.instance).add("Role", "Bastion")

        host_key_secret = f"{self.prefix}-bastion-ssh-hostkey"
        self.instance.role.add_to_principal_policy(
            iam.PolicyStatement(
                actions=["secretsmanager:CreateSecret", "secretsmanager:GetSecretValue", "secretsmanager:PutSecretValue"],
                resources=[f"arn:{self.partition}:secretsmanager:{self.region}:{self.account}:secret:{host_key_secret}-*"],
            )
        )
        self.instance.add_user_data(HOST_KEY_USER_DATA.format(secret_id=host_key_secret))

        eip = ec2.CfnEIP(
            self,
            "BastionEip",
            domain="vpc",
            tags=[cdk.CfnTag(key="Name", value=f"{self.prefix}-bastion-eip")],
        )
        ec2.CfnEIPAssociation(
            self,
            "BastionEipAssociation",
            instance_id=self.instance.instance_id,
            allocation_id=eip.attr_allocation_id,
        )

        if manage_dns_in_stack:
            route53.CfnRecordSet(
                self,
                "BastionRecord",
                hosted_zone_id=hosted_zone_id,
                name=record_name,
                type="A",
                ttl="300",
                resource_records=[eip.attr_public_ip],
                comment="Managed by CDK for bastion host",
            )

        self._business_hours(hosted_zone_id, record_name, manage_dns_in_stack)

        cdk.CfnOutput(self, "BastionInstanceId", value=self.instance.instance_id)
        cdk.CfnOutput(self, "BastionPublicIp", value=eip.attr_public_ip)
        cdk.CfnOutput(self, "BastionSecurityGroupId", value=self.security_group.security_group_id)
        if record_name:
            cdk.CfnOutput(self, "BastionRecordName", value=record_name)

    def _business_hours(self, hosted_zone_id, record_name, manage_dns_in_stack: bool) -> None:
        dynamic_dns = bool(hosted_zone_id and record_name) and not manage_dns_in_stack
        ec2_hours = self.python_function(
            "Ec2HoursFunction",
            asset="business_hours",
            handler="ec2_hours.lambda_handler",
            # Start plus up to 20 x 15s of public IP polling
            timeout=cdk.Duration.minutes(6),
            environment={
                "INSTANCE_ID": self.instance.instance_id,
                "HOSTED_ZONE_ID": hosted_zone_id if dynamic_dns else "",
                "RECORD_NAME": record_name if dynamic_dns else "",
                "SCHEDULE_TIMEZONE": self.settings.schedule_timezone,
            },
        )
        ec2_hours.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ec2:StartInstances", "ec2:StopInstances", "ec2:DescribeInstances"],
                resources=["*"],
            )
        )
        if dynamic_dns:
            ec2_hours.add_to_role_policy(
                iam.PolicyStatement(
                    actions=["route53:ChangeResourceRecordSets", "route53:ListResourceRecordSets"],
                    resources=[f"arn:{self.partition}:route53:::hostedzone/{hosted_zone_id}"],
                )
            )

        if self.settings.is_dev:
            self.business_hours_schedules("bastion", ec2_hours)

        # Keep DNS in sync for manual starts as well
        events.Rule(
            self,
            "BastionRunningRule",
            event_pattern=events.EventPattern(
                source=["aws.ec2"],
                detail_type=["EC2 Instance State-change Notification"],
                detail={"state": ["running"], "instance-id": [self.instance.instance_id]},
            ),
            targets=[events_targets.LambdaFunction(
                ec2_hours,
                event=events.RuleTargetInput.from_object({"action": "start"}),
                retry_attempts=0,
            )],
        )
