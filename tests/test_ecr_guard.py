"""Tests for the single-architecture ECR image guard."""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from helpers import client_error

EVENT = {
    "RequestType": "Create",
    "ResourceProperties": {"RepositoryName": "sample-app-dev/backend", "ImageTag": "v1.2.3"},
}


@pytest.fixture
def guard(load_lambda, monkeypatch):
    module = load_lambda("ecr_validate_single_arch")
    monkeypatch.setattr(module, "ecr_client", MagicMock())
    return module


def image(manifest_type, artifact_type=None):
    details = {"imageManifestMediaType": manifest_type}
    if artifact_type:
        details["artifactMediaType"] = artifact_type
    return {"imageDetails": [details]}


@pytest.mark.parametrize("media_type", [
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.index.v1+json",
])
def test_multi_arch_index_is_rejected(guard, media_type):
    guard.ecr_client.describe_images.return_value = image(media_type)

    with pytest.raises(guard.MultiArchImageError, match="linux/amd64"):
        guard.lambda_handler(EVENT, None)


def test_multi_arch_artifact_type_is_rejected(guard):
    guard.ecr_client.describe_images.return_value = image(
        "application/vnd.oci.image.manifest.v1+json", "application/vnd.oci.image.index.v1+json")

    with pytest.raises(guard.MultiArchImageError):
        guard.lambda_handler(EVENT, None)


def test_single_arch_image_passes(guard):
    guard.ecr_client.describe_images.return_value = image("application/vnd.docker.distribution.manifest.v2+json")

    assert guard.lambda_handler(EVENT, None) == {"PhysicalResourceId": "ecr-validate-single-arch"}
    guard.ecr_client.describe_images.assert_called_once_with(
        repositoryName="sample-app-dev/backend", imageIds=[{"imageTag": "v1.2.3"}])


def test_missing_tag(guard):
    guard.ecr_client.describe_images.side_effect = client_error("ImageNotFoundException")

    with pytest.raises(guard.ImageTagNotFoundError, match="sample-app-dev/backend:v1.2.3"):
        guard.lambda_handler(EVENT, None)


def test_empty_result_is_missing_tag(guard):
    guard.ecr_client.describe_images.return_value = {"imageDetails": []}

    with pytest.raises(guard.ImageTagNotFoundError):
        guard.lambda_handler(EVENT, None)


def test_other_client_errors_propagate(guard):
    guard.ecr_client.describe_images.side_effect = client_error("RepositoryNotFoundException")

    with pytest.raises(ClientError) as excinfo:
        guard.lambda_handler(EVENT, None)
    assert excinfo.value.response["Error"]["Code"] == "RepositoryNotFoundException"


def test_tag_defaults_to_latest(guard):
    guard.ecr_client.describe_images.return_value = image("application/vnd.oci.image.manifest.v1+json")

    guard.lambda_handler({"RequestType": "Update", "ResourceProperties": {"RepositoryName": "repo"}}, None)

    guard.ecr_client.describe_images.assert_called_once_with(repositoryName="repo", imageIds=[{"imageTag": "latest"}])


def test_delete_skips_validation(guard):
    assert guard.lambda_handler({"RequestType": "Delete"}, None) == {"PhysicalResourceId": "ecr-validate-single-arch"}
    guard.ecr_client.describe_images.assert_not_called()


def test_is_image_index(guard):
    assert guard.is_image_index("application/vnd.docker.distribution.manifest.list.v2+json")
    assert not guard.is_image_index(None)
    assert not guard.is_image_index("application/vnd.docker.distribution.manifest.v2+json")
