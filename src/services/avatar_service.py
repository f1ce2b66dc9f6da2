"""Avatar image upload to Supabase Storage."""

import logging
from uuid import UUID

from supabase import Client

from src.api.middleware.error_handler import UpstreamError, ValidationError
from src.core.config import get_settings
from src.core.store_errors import store_error_message
from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "jpg"


class StorageMisconfiguredError(UpstreamError):
    """The avatar bucket does not exist in the storage backend."""

    def __init__(self, bucket: str) -> None:
        super().__init__(
            f"Storage bucket missing. Create a public bucket named '{bucket}'.",
        )
        self.bucket = bucket


class AvatarUploadError(ValidationError):
    """The storage backend rejected the upload."""


def oversized_message(max_bytes: int) -> str:
    return f"Image must be under {max_bytes // (1024 * 1024)}MB."


def avatar_path(user_id: UUID | str, filename: str | None) -> str:
    """Storage object path: one avatar per account, overwritten on upload."""
    extension = DEFAULT_EXTENSION
    if filename and "." in filename:
        candidate = filename.rsplit(".", 1)[-1].strip().lower()
        if candidate.isalnum():
            extension = candidate
    return f"{user_id}/avatar.{extension}"


class AvatarService:
    """Service for storing profile pictures."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()
        settings = get_settings()
        self.bucket = settings.avatar_bucket
        self.max_bytes = settings.avatar_max_bytes

    def validate(self, content_type: str | None, size: int) -> None:
        """Check the upload is an image within the size limit.

        Raises:
            ValidationError: If the file is not an image or too large.
        """
        if not content_type or not content_type.startswith("image/"):
            raise ValidationError("File must be an image (e.g. JPG, PNG).")
        if size == 0:
            raise ValidationError("No image file provided.")
        if size > self.max_bytes:
            raise ValidationError(oversized_message(self.max_bytes))

    async def upload_avatar(
        self,
        user_id: UUID | str,
        filename: str | None,
        content_type: str | None,
        data: bytes,
    ) -> str:
        """Upload an avatar and return its public URL.

        Args:
            user_id: Owner of the avatar.
            filename: Original file name, used for the extension.
            content_type: MIME type of the upload.
            data: Image bytes.

        Returns:
            str: Public URL of the stored image.

        Raises:
            ValidationError: Invalid file.
            StorageMisconfiguredError: Bucket missing (502).
            AvatarUploadError: Any other storage rejection.
        """
        self.validate(content_type, len(data))
        path = avatar_path(user_id, filename)
        bucket = self.client.storage.from_(self.bucket)

        try:
            bucket.upload(
                path,
                data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except Exception as e:
            message = store_error_message(e) or "Upload failed"
            logger.error("Avatar upload for %s failed: %s", user_id, message)
            lowered = message.lower()
            if "bucket" in lowered or "not found" in lowered:
                raise StorageMisconfiguredError(self.bucket) from e
            raise AvatarUploadError(message) from e

        url = bucket.get_public_url(path)
        logger.info("Avatar stored for %s at %s", user_id, path)
        return url
