"""ECR single-architecture guard (CloudFormation custom resource provider).

Fails the deployment when the image tag a service is about to run is missing
or is a multi-arch manifest list / OCI image index. Fargate tasks are pinned
to linux/amd64, so a multi-arch tag would otherwise only fail at task start.
"""
import logging

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ecr_client = boto3.client("ecr")

PHYSICAL_RESOURCE_ID = "ecr-validate-single-arch"
DEFAULT_IMAGE_TAG = "latest"
INDEX_MEDIA_TYPE_MARKERS = ("manifest.list", "image.index")


class ImageTagNotFoundError(Exception):
    pass


class MultiArchImageError(Exception):
    pass


def is_image_index(media_type) -> bool:
    return bool(media_type) and any(marker in media_type for marker in INDEX_MEDIA_TYPE_MARKERS)


def describe_image(repository: str, tag: str) -> dict:
    try:
        response = ecr_client.describe_images(repositoryName=repository, imageIds=[{"imageTag": tag}])
    except ClientError as error:
        if error.response["Error"]["Code"] == "ImageNotFoundException":
            raise ImageTagNotFoundError(
                f"ECR tag not found: {repository}:{tag}. Push the image before deploy."
            ) from error
        raise
    details = response.get("imageDetails") or []
    if not details:
        raise ImageTagNotFoundError(f"ECR tag not found: {repository}:{tag}. Push the image before deploy.")
    return details[0]


def validate(repository: str, tag: str) -> None:
    details = describe_image(repository, tag)
    artifact_type = details.get("artifactMediaType")
    manifest_type = details.get("imageManifestMediaType")
    if is_image_index(artifact_type) or is_image_index(manifest_type):
        raise MultiArchImageError(
            f"Repository '{repository}' tag '{tag}' is a multi-arch Image Index "
            f"({artifact_type or manifest_type}). Please push a single-arch (linux/amd64) image."
        )
    logger.info("%s:%s is single-arch (%s)", repository, tag, manifest_type)


def lambda_handler(event, _context):
    request_type = event.get("RequestType")
    if request_type == "Delete":
        return {"PhysicalResourceId": PHYSICAL_RESOURCE_ID}

    properties = event.get("ResourceProperties") or {}
    repository = properties["RepositoryName"]
    tag = properties.get("ImageTag") or DEFAULT_IMAGE_TAG
    logger.info("Validating %s:%s (%s)", repository, tag, request_type)

    validate(repository, tag)
    return {"PhysicalResourceId": PHYSICAL_RESOURCE_ID}
