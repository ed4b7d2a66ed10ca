"""GitHub Actions stack - OIDC provider and deploy role.

Account-wide (one per account, shared by every environment). Workflows on
the allowed branches of one repository assume the role without long-lived
credentials to push images and roll ECS services.
"""
from typing import Sequence

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import aws_iam as iam

from stacks.base_stack import BaseStack

GITHUB_OIDC_URL = "https://token.actions.githubusercontent.com"
GITHUB_OIDC_THUMBPRINT = "6938fd4d98bab03faadb97b34396831e3780aea1"


def subject_claims(repository: str, branches: Sequence[str]) -> list:
    return [f"repo:{repository}:ref:refs/heads/{branch}" for branch in branches]


class GitHubActionsStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, github_repository: str,
                 allowed_branches: Sequence[str] = ("main", "develop"), **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        project = self.project

        self.oidc_provider = iam.OpenIdConnectProvider(
            self,
            "GitHubOidcProvider",
            url=GITHUB_OIDC_URL,
            client_ids=["sts.amazonaws.com"],
            thumbprints=[GITHUB_OIDC_THUMBPRINT],
        )

        self.deploy_role = iam.Role(
            self,
            "GitHubActionsDeployRole",
            role_name=f"{project}-github-actions-deploy-role",
            assumed_by=iam.FederatedPrincipal(
                self.oidc_provider.open_id_connect_provider_arn,
                {
                    "StringEquals": {"token.actions.githubusercontent.com:aud": "sts.amazonaws.com"},
                    "StringLike": {
                        "token.actions.githubusercontent.com:sub": subject_claims(github_repository, allowed_branches),
                    },
                },
                "sts:AssumeRoleWithWebIdentity",
            ),
            description="Role used by GitHub Actions to deploy to ECS",
            max_session_duration=cdk.Duration.hours(1),
        )

        statements = [
            ("ECRAuthAndPush", [
                "ecr:GetAuthorizationToken",
                "ecr:BatchCheckLayerAvailability",
                "ecr:GetDownloadUrlForLayer",
                "ecr:BatchGetImage",
                "ecr:PutImage",
                "ecr:InitiateLayerUpload",
                "ecr:UploadLayerPart",
                "ecr:CompleteLayerUpload",
            ], ["*"]),
            ("ECSDeployment", [
                "ecs:UpdateService",
                "ecs:DescribeServices",
                "ecs:DescribeTasks",
                "ecs:ListTasks",
                "ecs:RunTask",
            ], [
                f"arn:{self.partition}:ecs:{self.region}:{self.account}:service/{project}-*",
                f"arn:{self.partition}:ecs:{self.region}:{self.account}:task-definition/{project}-*",
                f"arn:{self.partition}:ecs:{self.region}:{self.account}:task/{project}-*",
            ]),
            # DescribeTaskDefinition by family name needs a wildcard resource
            ("ECSDescribeTaskDefinitions", ["ecs:DescribeTaskDefinition"], ["*"]),
            ("ECSDescribeClusters", ["ecs:DescribeClusters", "ecs:ListClusters"], ["*"]),
            ("EC2DescribeVPCResources", [
                "ec2:DescribeSubnets",
                "ec2:DescribeSecurityGroups",
                "ec2:DescribeVpcs",
            ], ["*"]),
            ("SSMReadParameters", ["ssm:GetParameter", "ssm:GetParameters"], [
                f"arn:{self.partition}:ssm:{self.region}:{self.account}:parameter/{project}/*",
            ]),
            ("STSGetCallerIdentity", ["sts:GetCallerIdentity"], ["*"]),
        ]
        for sid, actions, resources in statements:
            self.deploy_role.add_to_policy(iam.PolicyStatement(sid=sid, actions=actions, resources=resources))

        self.deploy_role.add_to_policy(
            iam.PolicyStatement(
                sid="PassECSRoles",
                actions=["iam:PassRole"],
                resources=[f"arn:{self.partition}:iam::{self.account}:role/{project}-*"],
                conditions={"StringEquals": {"iam:PassedToService": "ecs-tasks.amazonaws.com"}},
            )
        )

        cdk.CfnOutput(self, "GitHubActionsRoleArn", value=self.deploy_role.role_arn,
                      description="ARN of the IAM role for GitHub Actions")
        cdk.CfnOutput(self, "OidcProviderArn", value=self.oidc_provider.open_id_connect_provider_arn,
                      description="ARN of the GitHub OIDC provider")
