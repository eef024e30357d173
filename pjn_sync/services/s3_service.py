# pjn_sync/services/s3_service.py

import boto3
from botocore.exceptions import ClientError
from typing import Optional

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger


class S3Service:
    """
    Service layer for AWS S3 operations (downloaded PDFs, session blobs).
    """

    def __init__(self, bucket: Optional[str] = None, client=None):
        self.s3_client = client or boto3.client(
            's3',
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None
        )
        self.bucket = bucket or settings.S3_BUCKET_NAME

    def storage_uri(self, s3_key: str) -> str:
        return f"s3://{self.bucket}/{s3_key}"

    def upload_bytes(
        self,
        s3_key: str,
        data: bytes,
        content_type: str = "application/pdf",
        metadata: Optional[dict] = None
    ) -> str:
        """
        Upload raw bytes and return the s3:// URI.
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {}
            )
            logger.info("Object uploaded", extra={"s3_key": s3_key, "size": len(data)})
            return self.storage_uri(s3_key)

        except ClientError as e:
            logger.error(f"Failed to upload object: {str(e)}", extra={"s3_key": s3_key})
            raise

    def object_exists(self, s3_key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=s3_key)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            logger.error(f"Failed to check object: {str(e)}", extra={"s3_key": s3_key})
            raise

    def get_bytes(self, s3_key: str) -> Optional[bytes]:
        """
        Object body, or None when the key doesn't exist.
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=s3_key)
            return response["Body"].read()
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return None
            logger.error(f"Failed to read object: {str(e)}", extra={"s3_key": s3_key})
            raise

    def delete_object(self, s3_key: str):
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=s3_key)
            logger.info(f"Object deleted: {s3_key}")

        except ClientError as e:
            logger.error(f"Failed to delete object: {str(e)}")
            raise

    def head_bucket(self) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            logger.error(f"S3 bucket check failed: {str(e)}", extra={"bucket": self.bucket})
            return False


# Singleton instance
s3_service = S3Service()
