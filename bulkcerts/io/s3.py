from __future__ import annotations
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from bulkcerts.config import BulkCertsConfig
from bulkcerts.core.models import ArtifactLocation
from bulkcerts.errors import UpstreamError, ValidationError

logger = logging.getLogger("bulkcerts.io.s3")

# S3 DeleteObjects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000

_MISSING_CODES = ("NoSuchKey", "404", "NotFound")


class ArtifactStore:
    """S3 access for chunk archives."""

    def __init__(self, region: str, client=None):
        self.region = region
        self.client = client or boto3.client("s3", region_name=region)

    def put_bytes(self, location: ArtifactLocation, data: bytes, content_type: str = "application/zip") -> None:
        try:
            self.client.put_object(
                Bucket=location.bucket,
                Key=location.key,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as e:
            raise UpstreamError(f"Failed to upload {location.uri}: {e}") from e

    def get_bytes(self, location: ArtifactLocation) -> Optional[bytes]:
        """
        Download an object.

        Returns:
            None if the object does not exist
        """
        try:
            response = self.client.get_object(Bucket=location.bucket, Key=location.key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise UpstreamError(f"Failed to download {location.uri}: {e}") from e
        return response["Body"].read()

    def presign_get(self, location: ArtifactLocation, expires_in: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": location.bucket, "Key": location.key},
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise UpstreamError(f"Failed to presign {location.uri}: {e}") from e

    def list_keys(self, bucket: str, prefix: str) -> List[str]:
        keys: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as e:
            raise UpstreamError(f"Failed to list s3://{bucket}/{prefix}: {e}") from e
        return keys

    def delete_keys(self, bucket: str, keys: List[str]) -> int:
        """
        Delete keys with batch calls.

        Returns:
            Number of keys deleted
        """
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except ClientError as e:
                raise UpstreamError(f"Failed to delete objects in s3://{bucket}: {e}") from e

            errors = response.get("Errors", [])
            if errors:
                first = errors[0]
                raise UpstreamError(
                    f"Failed to delete {len(errors)} object(s) in s3://{bucket}, "
                    f"first: {first.get('Key')} ({first.get('Code')}: {first.get('Message')})"
                )
            deleted += len(batch)
        return deleted


def chunk_location(cfg: BulkCertsConfig, task_id: str, chunk_id: int) -> ArtifactLocation:
    """Canonical archive location of a chunk: {prefix}{task_id}/{chunk_id}/certs.zip"""
    if not cfg.s3_bucket:
        raise ValidationError("No artifact bucket configured (set BULKCERTS_S3_BUCKET)")
    return ArtifactLocation(bucket=cfg.s3_bucket, key=f"{cfg.s3_prefix}{task_id}/{chunk_id}/certs.zip")


def task_prefix(cfg: BulkCertsConfig, task_id: str) -> str:
    # trailing slash: a task id must not match another id it is a prefix of
    return f"{cfg.s3_prefix}{task_id}/"
