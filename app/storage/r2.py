"""Cloudflare R2 storage backend.

R2 is S3-compatible, so this extends the S3 storage backend with R2-specific
configuration defaults.
"""

from app.config import get_settings
from app.storage.s3 import S3Storage


class R2Storage(S3Storage):
    """Cloudflare R2 storage backend.

    R2 is S3-compatible but uses Cloudflare's global network. Image
    transforms go through Cloudflare image resizing when
    STORAGE_IMAGE_TRANSFORM_URL is configured.
    """

    def __init__(
        self,
        bucket: str | None = None,
        account_id: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        transform_url: str | None = None,
    ):
        """
        Initialize R2 storage.

        Args:
            bucket: R2 bucket name
            account_id: Cloudflare account ID
            access_key: R2 access key ID
            secret_key: R2 secret access key
            transform_url: Cloudflare image resizing base (…/cdn-cgi/image)
        """
        settings = get_settings()

        bucket = bucket or settings.STORAGE_R2_BUCKET
        account_id = account_id or settings.STORAGE_R2_ACCOUNT_ID
        access_key = access_key or settings.STORAGE_R2_ACCESS_KEY
        secret_key = secret_key or settings.STORAGE_R2_SECRET_KEY

        if not bucket:
            raise ValueError("R2 bucket name is required (STORAGE_R2_BUCKET)")
        if not account_id:
            raise ValueError("Cloudflare account ID is required (STORAGE_R2_ACCOUNT_ID)")

        # R2 endpoint format
        endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"

        # Initialize parent S3 storage
        super().__init__(
            bucket=bucket,
            region="auto",  # R2 uses "auto" for region
            access_key=access_key,
            secret_key=secret_key,
            endpoint_url=endpoint_url,
            transform_url=transform_url,
        )

        # Store for reference
        self.account_id = account_id
