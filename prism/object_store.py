import logging
from typing import List, Optional

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from prism.config import Settings
from prism.errors import ObjectStoreError

logger = logging.getLogger(__name__)


def get_s3_client(settings: Settings):
    """Initializes and returns a boto3 S3 client for the MinIO endpoint."""
    return boto3.client(
        "s3",
        endpoint_url=settings.minio_endpoint_url,
        region_name=settings.minio_region,
        aws_access_key_id=settings.minio_access_key_id,
        aws_secret_access_key=settings.minio_secret_access_key,
    )


def _status_of(error: Exception) -> Optional[int]:
    if isinstance(error, ClientError):
        return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return None


class ObjectStore:
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        return cls(get_s3_client(settings))

    def list_buckets(self) -> List[str]:
        try:
            response = self.client.list_buckets()
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(f"Error listing buckets: {e}", _status_of(e))
        return [b["Name"] for b in response.get("Buckets", [])]

    def get_or_create_bucket(self, name: str) -> str:
        """Looks the bucket up by name and creates it only when missing."""
        if name in self.list_buckets():
            return name

        logger.info("Bucket %s not found, creating it", name)
        try:
            self.client.create_bucket(Bucket=name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            # Lost a race with another creator
            if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise ObjectStoreError(f"error creating bucket {name}: {e}", _status_of(e))
        except BotoCoreError as e:
            raise ObjectStoreError(f"error creating bucket {name}: {e}")

        if name not in self.list_buckets():
            raise ObjectStoreError(f"bucket {name} not found after creation")
        return name

    def download(self, bucket: str, object_name: str, dest_path: str) -> None:
        try:
            self.client.download_file(bucket, object_name, dest_path)
        except (ClientError, BotoCoreError, Boto3Error, OSError) as e:
            raise ObjectStoreError(
                f"error downloading object {object_name} from bucket {bucket} to file {dest_path}: {e}",
                _status_of(e),
            )

    def upload(self, bucket: str, object_name: str, src_path: str) -> None:
        try:
            self.client.upload_file(src_path, bucket, object_name)
        except (ClientError, BotoCoreError, Boto3Error, OSError) as e:
            raise ObjectStoreError(
                f"error uploading file {src_path} to bucket {bucket} as {object_name}: {e}",
                _status_of(e),
            )
