"""Storage stack - S3 bucket for application files and log analytics output.

Separated from compute so the bucket (and its data) persists across
redeployments. Production references its existing bucket instead of
defining one, so a redeploy can never replace it.

Deploy:   cdk deploy <project>-<env>-s3
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import aws_s3 as s3

from stacks.base_stack import BaseStack


def bucket_name(project: str, environment: str) -> str:
    return f"{project}-files-{environment}"


class StorageStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        name = self.node.try_get_context("existingBucketName") or bucket_name(self.project, self.env_name)

        if self.settings.reuse_existing_bucket:
            self.bucket = s3.Bucket.from_bucket_name(self, "ExistingBucket", name)
            cdk.CfnOutput(self, "BucketName", value=name)
            return

        is_dev = self.settings.is_dev
        retention_days = self.profile.logs_retention_days

        self.bucket = s3.Bucket(
            self,
            "FilesBucket",
            bucket_name=name,
            encryption=s3.BucketEncryption.S3_MANAGED,
            # No versioning in dev to reduce storage cost
            versioned=not is_dev,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=cdk.RemovalPolicy.DESTROY if is_dev else cdk.RemovalPolicy.RETAIN,
            auto_delete_objects=is_dev,
            cors=[
                s3.CorsRule(
                    allowed_methods=[s3.HttpMethods.GET, s3.HttpMethods.HEAD],
                    allowed_origins=["*"],
                    allowed_headers=["*"],
                    exposed_headers=["ETag"],
                    max_age=300,
                )
            ],
            lifecycle_rules=[
                s3.LifecycleRule(expiration=cdk.Duration.days(7))
                if is_dev
                else s3.LifecycleRule(noncurrent_version_expiration=cdk.Duration.days(min(retention_days, 30)))
            ],
        )

        cdk.CfnOutput(self, "BucketName", value=self.bucket.bucket_name)
