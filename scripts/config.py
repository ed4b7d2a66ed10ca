"""Defaults shared by the operator scripts. Override with environment variables."""
import os

REGION = os.environ.get("AWS_REGION") or os.environ.get("CDK_DEFAULT_REGION") or "ap-northeast-3"
PROJECT = os.environ.get("PROJECT", "sample-app")
ENVIRONMENT = os.environ.get("ENV", "dev")
