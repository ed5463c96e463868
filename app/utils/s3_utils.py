### app/utils/s3_utils.py

# Standard library imports
from functools import cached_property, lru_cache
from typing import Optional
from urllib.parse import quote

# Third party imports
import boto3
from botocore.exceptions import ClientError

# Local imports
from app.core.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)


class S3Utils:
    """Utility class for storing agreement files in S3"""
    def __init__(self, bucket_name: Optional[str] = None):
        self.bucket_name = bucket_name or settings.s3_bucket_name

    @cached_property
    def s3_client(self):
        """S3 client, created on first use"""
        return boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )

    def object_url(self, key: str) -> str:
        """Public URL of an object in the bucket"""
        region = settings.aws_region or "us-east-1"
        return f"https://{self.bucket_name}.s3.{region}.amazonaws.com/{quote(key)}"

    def upload_bytes(self, data: bytes, key: str, content_type: Optional[str] = None) -> Optional[str]:
        """
        Upload raw bytes to S3

        Args:
            data: File content
            key: S3 key (path) where the file will be stored
            content_type: Optional content type of the file

        Returns:
            str: URL of the stored object, None if the upload failed
        """
        try:
            extra_args = {}
            if content_type:
                extra_args['ContentType'] = content_type

            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                **extra_args
            )
            return self.object_url(key)
        except ClientError as e:
            logger.error("Error uploading file to S3", key=key, error_message=str(e))
            return None

    def delete_file(self, key: str) -> bool:
        """
        Delete a file from S3

        Returns:
            bool: True if deletion was successful, False otherwise
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
            return True
        except ClientError as e:
            logger.error("Error deleting file from S3", key=key, error_message=str(e))
            return False


@lru_cache
def get_s3_utils() -> S3Utils:
    """Dependency returning the shared S3Utils"""
    return S3Utils()
