"""Network stack - VPC and the ALB/ECS security groups.

Three subnet tiers per AZ: public (ALB, bastion), private with egress (ECS
tasks) and isolated (RDS, DB init Lambda). Dev runs without NAT gateways;
a Secrets Manager interface endpoint lets isolated Lambdas reach the API.
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import aws_ec2 as ec2

from stacks.base_stack import BaseStack

ENVIRONMENT_CIDRS = {
    "dev": "172.20.0.0/16",
    "staging": "172.21.0.0/16",
    "prod": "172.22.0.0/16",
}

FRONTEND_PORT = 80
BACKEND_PORT = 5000


def vpc_cidr(environment: str) -> str:
    return ENVIRONMENT_CIDRS.get(environment, ENVIRONMENT_CIDRS["dev"])


class VpcStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        nat_gateways = self.settings.nat_gateways
        if nat_gateways is None:
            nat_gateways = 0 if self.settings.is_dev else 2
        max_azs = int(self.node.try_get_context("maxAzs") or 2)

        self.vpc = ec2.Vpc(
            self,
            "Vpc",
            vpc_name=f"{self.prefix}-vpc",
            ip_addresses=ec2.IpAddresses.cidr(vpc_cidr(self.env_name)),
            nat_gateways=nat_gateways,
            max_azs=max_azs,
            subnet_configuration=[
                ec2.SubnetConfiguration(name="public", subnet_type=ec2.SubnetType.PUBLIC, cidr_mask=24),
                ec2.SubnetConfiguration(name="private", subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS, cidr_mask=24),
                ec2.SubnetConfiguration(name="db", subnet_type=ec2.SubnetType.PRIVATE_ISOLATED, cidr_mask=24),
            ],
        )

        if self.settings.is_dev and nat_gateways == 0:
            self.vpc.add_interface_endpoint(
                "SecretsManagerEndpoint",
                service=ec2.InterfaceVpcEndpointAwsService.SECRETS_MANAGER,
                subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            )

        self.alb_security_group = ec2.SecurityGroup(
            self,
            "AlbSecurityGroup",
            vpc=self.vpc,
            description="ALB Security Group",
            allow_all_outbound=False,
        )
        self._tag_group(self.alb_security_group, "alb")
        self.alb_security_group.add_ingress_rule(ec2.Peer.any_ipv4(), ec2.Port.tcp(80), "HTTP")
        self.alb_security_group.add_ingress_rule(ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "HTTPS")
        self.alb_security_group.add_egress_rule(ec2.Peer.any_ipv4(), ec2.Port.tcp(FRONTEND_PORT), "To ECS frontend")
        self.alb_security_group.add_egress_rule(ec2.Peer.any_ipv4(), ec2.Port.tcp(BACKEND_PORT), "To ECS backend")

        self.ecs_security_group = ec2.SecurityGroup(
            self,
            "EcsSecurityGroup",
            vpc=self.vpc,
            description="ECS Security Group",
            allow_all_outbound=True,
        )
        # Tagged so deploy pipelines can discover it without knowing its id
        self._tag_group(self.ecs_security_group, "ecs")
        self.ecs_security_group.add_ingress_rule(
            self.alb_security_group, ec2.Port.tcp(FRONTEND_PORT), "Frontend HTTP from ALB")
        self.ecs_security_group.add_ingress_rule(
            self.alb_security_group, ec2.Port.tcp(BACKEND_PORT), "Backend HTTP from ALB")

        cdk.CfnOutput(self, "VpcId", value=self.vpc.vpc_id)

    def _tag_group(self, group: ec2.SecurityGroup, kind: str) -> None:
        cdk.Tags.of(group).add("Name", f"{self.prefix}-{kind}-sg")
        cdk.Tags.of(group).add("Type", kind)
