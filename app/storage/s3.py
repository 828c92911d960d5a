"""AWS S3 storage backend."""

import uuid
from urllib.parse import quote

import aioboto3

from app.config import get_settings
from app.storage.base import StorageBackend, TransformOptions, UploadResult, validate_storage_path
from app.storage.local import sanitize_filename


class S3Storage(StorageBackend):
    """AWS S3 storage backend.

    Objects stay private; reads go through presigned GET URLs.
    """

    def __init__(
        self,
        bucket: str | None = None,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
        transform_url: str | None = None,
    ):
        """
        Initialize S3 storage.

        Args:
            bucket: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID
            secret_key: AWS secret access key
            endpoint_url: Custom endpoint URL (for S3-compatible services)
            transform_url: Image resizing endpoint that wraps signed URLs
        """
        settings = get_settings()

        self.bucket = bucket or settings.STORAGE_S3_BUCKET
        self.region = region or settings.STORAGE_S3_REGION
        self.access_key = access_key or settings.STORAGE_S3_ACCESS_KEY
        self.secret_key = secret_key or settings.STORAGE_S3_SECRET_KEY
        self.endpoint_url = endpoint_url or settings.STORAGE_S3_ENDPOINT_URL
        self.transform_url = transform_url or settings.STORAGE_IMAGE_TRANSFORM_URL

        if not self.bucket:
            raise ValueError("S3 bucket name is required (STORAGE_S3_BUCKET)")

        self._session = aioboto3.Session(
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region,
        )

    def _get_client_kwargs(self) -> dict:
        """Get kwargs for creating S3 client."""
        kwargs = {}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        content_type: str,
        owner_id: str | None = None,
        object_id: str | None = None,
    ) -> UploadResult:
        """Upload a file to S3."""
        file_id = object_id or str(uuid.uuid4())
        safe_filename = sanitize_filename(filename)

        # Create storage path: {owner_id}/{file_id}/{filename}
        if owner_id:
            storage_path = f"{owner_id}/{file_id}/{safe_filename}"
        else:
            storage_path = f"{file_id}/{safe_filename}"

        await self.write(storage_path, file_data, content_type)

        return UploadResult(storage_path=storage_path, size_bytes=len(file_data))

    async def write(self, storage_path: str, file_data: bytes, content_type: str) -> None:
        async with self._session.client("s3", **self._get_client_kwargs()) as s3:
            await s3.put_object(
                Bucket=self.bucket,
                Key=validate_storage_path(storage_path),
                Body=file_data,
                ContentType=content_type,
            )

    async def read(self, storage_path: str) -> bytes:
        async with self._session.client("s3", **self._get_client_kwargs()) as s3:
            response = await s3.get_object(Bucket=self.bucket, Key=storage_path)
            async with response["Body"] as stream:
                return await stream.read()

    async def delete(self, storage_path: str) -> bool:
        """Delete a file from S3."""
        async with self._session.client("s3", **self._get_client_kwargs()) as s3:
            try:
                await s3.delete_object(Bucket=self.bucket, Key=storage_path)
                return True
            except Exception:
                return False

    async def exists(self, storage_path: str) -> bool:
        """Check if a file exists in S3."""
        async with self._session.client("s3", **self._get_client_kwargs()) as s3:
            try:
                await s3.head_object(Bucket=self.bucket, Key=storage_path)
                return True
            except Exception:
                return False

    async def create_signed_url(
        self,
        storage_path: str,
        expires_in: int,
        transform: TransformOptions | None = None,
    ) -> str:
        """Presign a GET for the object, wrapped by the resizing endpoint if asked."""
        key = validate_storage_path(storage_path)
        async with self._session.client("s3", **self._get_client_kwargs()) as s3:
            url = await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )

        if transform and self.transform_url:
            # Presigned query strings cannot take extra parameters, so the
            # transform travels in the resizing endpoint's path instead.
            options = ",".join(
                f"{'fit' if k == 'resize' else k}={v}" for k, v in sorted(transform.as_params().items())
            )
            return f"{self.transform_url.rstrip('/')}/{options}/{quote(url, safe='')}"
        return url
