"""Bot avatar storage on local disk with an inline data-URL fallback."""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from .config import config
from .errors import ValidationError

logger = config.get_logger(__name__)


@dataclass
class StoredAvatar:
    """Where an uploaded avatar can be fetched from."""

    url: str
    method: str
    note: str | None = None


class AvatarStore:
    """Saves avatar images under a public directory."""

    def __init__(
        self,
        directory: Path | None = None,
        base_url: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.directory = Path(directory or config.AVATAR_DIR)
        self.base_url = (base_url or config.AVATAR_BASE_URL).rstrip("/")
        self.max_bytes = max_bytes or config.MAX_AVATAR_BYTES

    def validate(self, data: bytes, content_type: str | None) -> None:
        """Reject non-images and oversized uploads.

        Raises:
            ValidationError: If the upload is not an acceptable image.
        """
        if not content_type or not content_type.startswith("image/"):
            msg = "File must be an image"
            raise ValidationError(msg)
        if len(data) > self.max_bytes:
            msg = f"File size must be less than {self.max_bytes // (1024 * 1024)}MB"
            raise ValidationError(msg)

    async def save(
        self,
        experience_id: str,
        data: bytes,
        *,
        content_type: str | None,
        file_name: str | None = None,
    ) -> StoredAvatar:
        """Store an avatar, falling back to a base64 data URL on disk errors.

        Returns:
            StoredAvatar with ``method`` "storage" or "base64".

        Raises:
            ValidationError: If the upload is not an acceptable image.
        """
        self.validate(data, content_type)

        extension = Path(file_name).suffix.lstrip(".") if file_name else ""
        name = f"avatar_{experience_id}_{int(time.time() * 1000)}"
        if extension:
            name = f"{name}.{extension}"

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.directory / name, "wb") as out_file:
                await out_file.write(data)
        except OSError:
            logger.exception("Error writing avatar to %s", self.directory)
            encoded = base64.b64encode(data).decode()
            return StoredAvatar(
                url=f"data:{content_type};base64,{encoded}",
                method="base64",
                note="Avatar storage unavailable; using an inline data URL.",
            )

        logger.info("Stored avatar %s for experience %s", name, experience_id)
        return StoredAvatar(url=f"{self.base_url}/{name}", method="storage")
