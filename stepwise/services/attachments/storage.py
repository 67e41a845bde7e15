"""
Local filesystem storage for uploaded attachments.

Files land in date-partitioned directories below the configured upload root:
``<root>/YYYY-MM-DD/<timestamp>_<uuid>_<sanitized name>``.
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from stepwise.core.config import settings
from stepwise.utils.exception import StorageError
from stepwise.utils.logging.otel_logger import logger


class LocalFileStorage:
    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def build_path(self, sanitized_name: str, now: Optional[datetime] = None) -> Path:
        now = now or datetime.now(timezone.utc)
        stored_name = f"{int(now.timestamp() * 1000)}_{uuid.uuid4().hex}_{sanitized_name}"
        return self.base_dir / now.strftime("%Y-%m-%d") / stored_name

    def save(self, content: bytes, sanitized_name: str) -> Path:
        """Write ``content`` under a fresh date-partitioned path and return that path."""
        path = self.build_path(sanitized_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            logger.error(f"Failed to store file {path}: {e}")
            raise StorageError(f"Could not store file {sanitized_name}")
        logger.info(f"Stored attachment file {path} ({len(content)} bytes)")
        return path

    def delete(self, file_path: str) -> bool:
        """Remove a stored file. Returns False when it was already gone."""
        path = Path(file_path)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Attachment file already missing: {path}")
            return False
        except OSError as e:
            logger.error(f"Failed to delete file {path}: {e}")
            raise StorageError(f"Could not delete file {path.name}")
        return True

    def exists(self, file_path: str) -> bool:
        return Path(file_path).is_file()


def get_file_storage() -> LocalFileStorage:
    return LocalFileStorage(settings.UPLOAD_DIR)
