"""Cross-stack value exchange through SSM Parameter Store.

Stacks never export/import CloudFormation outputs to each other. A producer
publishes a value under a deterministic key (see parameter_names) and a
consumer resolves it at deploy time, so stacks can be deployed, replaced and
destroyed independently.

This module holds the CDK half (publish_parameter / resolve_parameter);
parameter_store.ParameterStore reads and writes the same keys with boto3.
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_iam as iam,
    aws_ssm as ssm,
    custom_resources as cr,
)


def parameter_arn(scope: Construct, key: str) -> str:
    stack = cdk.Stack.of(scope)
    return stack.format_arn(
        service="ssm",
        resource="parameter",
        resource_name=key.lstrip("/"),
        arn_format=cdk.ArnFormat.SLASH_RESOURCE_NAME,
    )


def publish_parameter(scope: Construct, construct_id: str, key: str, value: str,
                      description: str = "") -> cr.AwsCustomResource:
    """Upsert `key` on create/update and delete it with the publishing stack.

    PutParameter with Overwrite=True keeps redeploys idempotent where a plain
    ssm.StringParameter would fail on a key left behind by an earlier stack.
    """
    put_call = cr.AwsSdkCall(
        service="SSM",
        action="putParameter",
        parameters={
            "Name": key,
            "Value": value,
            "Type": "String",
            "Description": description or f"Published by {cdk.Stack.of(scope).stack_name}",
            "Overwrite": True,
        },
        physical_resource_id=cr.PhysicalResourceId.of(key),
    )
    return cr.AwsCustomResource(
        scope,
        construct_id,
        on_create=put_call,
        on_update=put_call,
        on_delete=cr.AwsSdkCall(
            service="SSM",
            action="deleteParameter",
            parameters={"Name": key},
            ignore_error_codes_matching="ParameterNotFound",
        ),
        policy=cr.AwsCustomResourcePolicy.from_statements([
            iam.PolicyStatement(
                actions=["ssm:PutParameter", "ssm:DeleteParameter"],
                resources=[parameter_arn(scope, key)],
            )
        ]),
        install_latest_aws_sdk=False,
    )


def resolve_parameter(scope: Construct, key: str) -> str:
    """Deploy-time token for the current value of `key`.

    CloudFormation resolves it when the consuming stack deploys; a missing
    key fails that deployment.
    """
    return ssm.StringParameter.value_for_string_parameter(scope, key)
