"""
Amazon S3 blob store.

Works with AWS S3 and S3-compatible services (MinIO, R2, ...) through
boto3. Failures surface as StorageError; the store does not retry.
"""

from pathlib import Path
from typing import Any, List, Optional, Sequence

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from publisher.src.services.exceptions import StorageError
from publisher.src.storage.base import BlobEntry, BlobStore, logger, normalize_key


# delete_objects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000


class S3BlobStore(BlobStore):
    """
    Blob store backed by an S3 bucket.

    Args:
        bucket: Bucket name
        region: AWS region
        endpoint_url: Custom endpoint for S3-compatible storage
        base_url: Public URL the bucket is served from (CDN); derived when empty
        client: Pre-built boto3 client (tests)
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str = "",
        base_url: str = "",
        client: Optional[Any] = None,
    ):
        if not bucket:
            raise ValueError("S3 bucket name is required")
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/")
        self.base_url = base_url.rstrip("/")
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url or None,
        )

    def _fail(self, action: str, path: str, error: Exception) -> StorageError:
        logger.error(
            f"S3 {action} failed for {path}: {error}",
            extra={"event": "storage.s3_error", "action": action, "bucket": self.bucket, "path": path}
        )
        return StorageError(f"S3 {action} failed for '{path}': {error}", path=path)

    def _exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise self._fail("head_object", key, e)

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        key = normalize_key(path)
        if not overwrite and self._exists(key):
            raise StorageError(f"Object already exists: {key}", path=key)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail("put_object", key, e)

        logger.debug(
            f"Uploaded {len(data)} bytes to s3://{self.bucket}/{key}",
            extra={"event": "storage.upload", "path": key, "content_type": content_type}
        )
        return key

    def upload_file(
        self,
        path: str,
        source: Path,
        content_type: str = "application/octet-stream",
        overwrite: bool = True,
    ) -> str:
        key = normalize_key(path)
        if not overwrite and self._exists(key):
            raise StorageError(f"Object already exists: {key}", path=key)
        try:
            # managed transfer; large packages go up as multipart uploads
            self.client.upload_file(
                str(source),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise self._fail("upload_file", key, e)

        logger.debug(
            f"Uploaded {source} to s3://{self.bucket}/{key}",
            extra={"event": "storage.upload", "path": key, "content_type": content_type}
        )
        return key

    def list(self, prefix: str) -> List[BlobEntry]:
        key_prefix = normalize_key(prefix)
        list_prefix = f"{key_prefix}/" if key_prefix else ""

        entries: List[BlobEntry] = []
        continuation_token = None
        try:
            while True:
                kwargs = {
                    "Bucket": self.bucket,
                    "Prefix": list_prefix,
                    "Delimiter": "/",
                }
                if continuation_token:
                    kwargs["ContinuationToken"] = continuation_token

                response = self.client.list_objects_v2(**kwargs)

                for common in response.get("CommonPrefixes", []):
                    folder = common["Prefix"].rstrip("/")
                    entries.append(
                        BlobEntry(name=folder.rsplit("/", 1)[-1], path=folder, is_folder=True)
                    )
                for obj in response.get("Contents", []):
                    key = obj["Key"]
                    # skip folder markers
                    if key.endswith("/"):
                        continue
                    entries.append(
                        BlobEntry(name=key.rsplit("/", 1)[-1], path=key, size=obj.get("Size", 0))
                    )

                if response.get("IsTruncated"):
                    continuation_token = response.get("NextContinuationToken")
                else:
                    break
        except (ClientError, BotoCoreError) as e:
            raise self._fail("list_objects_v2", key_prefix, e)

        return entries

    def remove(self, paths: Sequence[str]) -> None:
        keys = [normalize_key(path) for path in paths]
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                raise self._fail("delete_objects", batch[0], e)

            errors = response.get("Errors") or []
            if errors:
                first = errors[0]
                raise StorageError(
                    f"S3 delete_objects failed for '{first.get('Key')}': {first.get('Message')}",
                    path=first.get("Key"),
                )

    def read(self, path: str) -> bytes:
        key = normalize_key(path)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise self._fail("get_object", key, e)

    def public_url(self, path: str) -> str:
        key = normalize_key(path)
        if self.base_url:
            return f"{self.base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
