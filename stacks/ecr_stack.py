"""Container registry stack - backend and frontend ECR repositories.

Repositories outlive the stack (RETAIN). When a repository already exists
(e.g. the stack was destroyed and redeployed) it is imported by name.
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import aws_ecr as ecr

from stacks.base_stack import BaseStack

COMPONENTS = ("backend", "frontend")


def repository_name(project: str, environment: str, component: str) -> str:
    return f"{project}-{environment}/{component}"


class EcrStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, lookups, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.repositories = {}
        for component in COMPONENTS:
            name = repository_name(self.project, self.env_name, component)
            construct_name = f"{component.capitalize()}Repository"
            if lookups.ecr_repository_exists(name):
                repository = ecr.Repository.from_repository_name(self, construct_name, name)
            else:
                repository = ecr.Repository(
                    self,
                    construct_name,
                    repository_name=name,
                    image_scan_on_push=True,
                    removal_policy=cdk.RemovalPolicy.RETAIN,
                    lifecycle_rules=[
                        # Long-lived task definitions may still point at old untagged digests
                        ecr.LifecycleRule(
                            tag_status=ecr.TagStatus.UNTAGGED,
                            max_image_count=200,
                        ),
                    ],
                )
            self.repositories[component] = repository
            cdk.CfnOutput(self, f"{component.capitalize()}RepositoryName", value=name)

        self.backend_repository = self.repositories["backend"]
        self.frontend_repository = self.repositories["frontend"]
