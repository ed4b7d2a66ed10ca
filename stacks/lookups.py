"""Synth-time lookups of resources that may already exist in the account.

Stacks use these to import an existing repository/log group/secret instead of
creating a duplicate. Each lookup is a read-only boto3 call that tells
"not found" apart from every other failure:

  ResourceNotFoundError - the resource definitely does not exist
  LookupFailedError     - credentials, throttling, network... (unknown state)

The *_exists helpers only turn ResourceNotFoundError into False; a failed
lookup propagates so synth never silently creates a resource that exists.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {
    "ecr": {"RepositoryNotFoundException"},
    "logs": {"ResourceNotFoundException"},
    "rds": {"DBInstanceNotFound", "DBInstanceNotFoundFault"},
    "secretsmanager": {"ResourceNotFoundException"},
}


class ResourceLookupError(Exception):
    pass


class ResourceNotFoundError(ResourceLookupError):
    pass


class LookupFailedError(ResourceLookupError):
    pass


@dataclass(frozen=True)
class RdsInstanceAttributes:
    endpoint: str
    port: int
    security_group_ids: List[str] = field(default_factory=list)
    arn: Optional[str] = None


class ResourceLookups:
    """Typed lookups against one region."""

    def __init__(self, region: Optional[str] = None, session=None):
        self.region = region
        self._session = session or boto3.session.Session(region_name=region)
        self._clients = {}

    def client(self, service: str):
        if service not in self._clients:
            self._clients[service] = self._session.client(service, region_name=self.region)
        return self._clients[service]

    def _call(self, service: str, resource: str, operation: str, **kwargs):
        try:
            return getattr(self.client(service), operation)(**kwargs)
        except ClientError as error:
            code = error.response["Error"]["Code"]
            if code in NOT_FOUND_CODES.get(service, ()):
                raise ResourceNotFoundError(f"{service} resource not found: {resource}") from error
            raise LookupFailedError(f"{service} lookup failed for {resource}: {code}") from error
        except BotoCoreError as error:
            raise LookupFailedError(f"{service} lookup failed for {resource}: {error}") from error

    def ecr_repository_exists(self, repository_name: str) -> bool:
        try:
            self._call("ecr", repository_name, "describe_repositories", repositoryNames=[repository_name])
        except ResourceNotFoundError:
            return False
        return True

    def log_group_exists(self, log_group_name: str) -> bool:
        response = self._call("logs", log_group_name, "describe_log_groups", logGroupNamePrefix=log_group_name)
        return any(group["logGroupName"] == log_group_name for group in response.get("logGroups", []))

    def rds_instance_attributes(self, identifier: str) -> RdsInstanceAttributes:
        response = self._call("rds", identifier, "describe_db_instances", DBInstanceIdentifier=identifier)
        instances = response.get("DBInstances") or []
        if not instances:
            raise ResourceNotFoundError(f"rds resource not found: {identifier}")
        instance = instances[0]
        return RdsInstanceAttributes(
            endpoint=instance["Endpoint"]["Address"],
            port=int(instance["Endpoint"]["Port"]),
            security_group_ids=[group["VpcSecurityGroupId"] for group in instance.get("VpcSecurityGroups", [])],
            arn=instance.get("DBInstanceArn"),
        )

    def secret_arn(self, secret_name: str) -> str:
        response = self._call("secretsmanager", secret_name, "describe_secret", SecretId=secret_name)
        return response["ARN"]

    def find_secret_arn(self, secret_name: str) -> Optional[str]:
        try:
            return self.secret_arn(secret_name)
        except ResourceNotFoundError:
            return None


class DisabledLookups:
    """Stand-in used when lookups are switched off (tests, offline synth).

    Everything reports "does not exist" so stacks take their create path.
    """

    def ecr_repository_exists(self, repository_name: str) -> bool:
        return False

    def log_group_exists(self, log_group_name: str) -> bool:
        return False

    def rds_instance_attributes(self, identifier: str) -> RdsInstanceAttributes:
        raise ResourceNotFoundError(f"lookups disabled, cannot resolve rds instance {identifier}")

    def secret_arn(self, secret_name: str) -> str:
        raise ResourceNotFoundError(f"lookups disabled, cannot resolve secret {secret_name}")

    def find_secret_arn(self, secret_name: str) -> Optional[str]:
        return None


def lookups_for(settings):
    if not settings.use_lookups:
        logger.info("Resource lookups disabled; every resource is created by its stack")
        return DisabledLookups()
    return ResourceLookups(region=settings.region)
