import logging
import os
import secrets
from pathlib import Path

from .config import settings
from .errors import AppError


log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}


class PhotoStore:
    """Listing photos on local disk, served as static files under the public base URL."""

    def __init__(self, root: str, public_base_url: str, max_bytes: int):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_bytes = max_bytes

    def _extension(self, filename: str | None) -> str:
        ext = (filename or "").rsplit(".", 1)[-1].lower() if "." in (filename or "") else ""
        if ext not in ALLOWED_EXTENSIONS:
            raise AppError("unsupported_photo", "Photos must be jpg, png, webp or gif", 422, {"filename": filename})
        return ext

    def validate(self, filename: str | None, data: bytes) -> str:
        """Check one upload without touching disk; returns its extension."""
        ext = self._extension(filename)
        if not data:
            raise AppError("empty_photo", "Photo upload is empty", 422, {"filename": filename})
        if len(data) > self.max_bytes:
            raise AppError("photo_too_large", "Photo exceeds the size limit", 413, {"max_bytes": self.max_bytes})
        return ext

    def save(self, listing_id: str, filename: str | None, data: bytes) -> str:
        """Store one photo and return its public URL."""
        ext = self.validate(filename, data)
        key = f"listing-photos/{listing_id}/{secrets.token_hex(8)}.{ext}"
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.info("stored photo %s (%d bytes)", key, len(data))
        return self.public_url(key)

    def save_all(self, listing_id: str, uploads: list[tuple[str | None, bytes]]) -> list[str]:
        """Store a batch of photos, all or nothing."""
        for filename, data in uploads:
            self.validate(filename, data)
        urls: list[str] = []
        try:
            for filename, data in uploads:
                urls.append(self.save(listing_id, filename, data))
        except Exception:
            for url in urls:
                self.delete_url(url)
            raise
        return urls

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def delete_url(self, url: str) -> None:
        prefix = self.public_base_url + "/"
        if not url.startswith(prefix):
            return
        path = self.root / url[len(prefix):]
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


photo_store = PhotoStore(settings.MEDIA_DIR, settings.PUBLIC_MEDIA_BASE_URL, settings.MAX_PHOTO_BYTES)
