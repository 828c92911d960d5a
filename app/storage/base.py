"""Abstract base class for storage backends."""

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class UploadResult:
    """Result of a successful file upload."""

    storage_path: str  # Path within the storage backend
    size_bytes: int  # File size in bytes


@dataclass(frozen=True)
class TransformOptions:
    """Image transform attached to a delivery URL.

    Resize mode and output format are fixed; only the box and quality vary.
    """

    width: int | None = None
    height: int | None = None
    quality: int = 75
    resize: str = "cover"
    format: str = "webp"

    def as_params(self) -> dict[str, str]:
        params = {"quality": str(self.quality), "resize": self.resize, "format": self.format}
        if self.width:
            params["width"] = str(self.width)
        if self.height:
            params["height"] = str(self.height)
        return params


def validate_storage_path(storage_path: str) -> str:
    """Normalize a storage path and make sure it stays under the storage root.

    Raises:
        ValueError: absolute paths, traversal segments, backslashes or empty paths.
    """
    if not storage_path or "\\" in storage_path or "\x00" in storage_path:
        raise ValueError("Invalid storage path")
    if storage_path.startswith("/") or "://" in storage_path:
        raise ValueError("Invalid storage path")
    parts = storage_path.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise ValueError("Invalid storage path")
    return posixpath.normpath(storage_path)


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        filename: str,
        content_type: str,
        owner_id: str | None = None,
        object_id: str | None = None,
    ) -> UploadResult:
        """
        Upload an original file to storage.

        Args:
            file_data: Raw file bytes
            filename: Original filename (will be sanitized)
            content_type: MIME type of the file
            owner_id: Optional owner ID for organizing files
            object_id: Directory name for the upload; every derived object
                (processed output, thumbnails, variants) lives beside it

        Returns:
            UploadResult with storage path and size
        """
        pass

    @abstractmethod
    async def write(self, storage_path: str, file_data: bytes, content_type: str) -> None:
        """Write bytes at an exact storage path (processor outputs)."""
        pass

    @abstractmethod
    async def read(self, storage_path: str) -> bytes:
        """Read a stored object."""
        pass

    @abstractmethod
    async def delete(self, storage_path: str) -> bool:
        """
        Delete a file from storage.

        Args:
            storage_path: Path returned from upload

        Returns:
            True if deleted, False if file didn't exist
        """
        pass

    @abstractmethod
    async def exists(self, storage_path: str) -> bool:
        """
        Check if a file exists in storage.

        Args:
            storage_path: Path to check

        Returns:
            True if file exists
        """
        pass

    @abstractmethod
    async def create_signed_url(
        self,
        storage_path: str,
        expires_in: int,
        transform: TransformOptions | None = None,
    ) -> str:
        """
        Create a time-limited URL granting read access to one object.

        Args:
            storage_path: Validated path within the storage backend
            expires_in: Validity window in seconds
            transform: Optional image transform to attach

        Returns:
            Signed URL
        """
        pass
