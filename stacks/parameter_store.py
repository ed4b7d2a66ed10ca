"""Runtime (boto3) access to parameter bridge keys.

Operator scripts and preflight checks use this to read and write the keys
that stacks exchange (see parameter_names). Kept free of CDK imports so it
runs without a node runtime.
"""
import logging
from typing import Dict, Iterable, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class ParameterStoreError(Exception):
    pass


class ParameterNotFoundError(ParameterStoreError):
    def __init__(self, keys):
        self.keys = [keys] if isinstance(keys, str) else list(keys)
        super().__init__(f"Parameter(s) not found: {', '.join(self.keys)}")


class ParameterStore:
    """Runtime (boto3) access to published keys."""

    def __init__(self, client=None, region: Optional[str] = None):
        self.client = client or boto3.client("ssm", region_name=region)

    def publish(self, key: str, value: str, description: str = "") -> int:
        try:
            response = self.client.put_parameter(
                Name=key, Value=value, Type="String", Description=description, Overwrite=True,
            )
        except ClientError as error:
            raise ParameterStoreError(f"Failed to publish {key}: {error}") from error
        logger.info("Published %s (version %s)", key, response.get("Version"))
        return response.get("Version", 0)

    def resolve(self, key: str) -> str:
        try:
            response = self.client.get_parameter(Name=key)
        except ClientError as error:
            if error.response["Error"]["Code"] == "ParameterNotFound":
                raise ParameterNotFoundError(key) from error
            raise ParameterStoreError(f"Failed to resolve {key}: {error}") from error
        return response["Parameter"]["Value"]

    def delete(self, key: str) -> bool:
        try:
            self.client.delete_parameter(Name=key)
        except ClientError as error:
            if error.response["Error"]["Code"] == "ParameterNotFound":
                return False
            raise ParameterStoreError(f"Failed to delete {key}: {error}") from error
        logger.info("Deleted %s", key)
        return True

    def require(self, keys: Iterable[str]) -> Dict[str, str]:
        """Resolve every key, reporting all missing ones in a single error."""
        values, missing = {}, []
        for key in keys:
            try:
                values[key] = self.resolve(key)
            except ParameterNotFoundError:
                missing.append(key)
        if missing:
            raise ParameterNotFoundError(missing)
        return values
