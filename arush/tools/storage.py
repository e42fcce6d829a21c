"""Public blob storage for generated media."""

from __future__ import annotations

import logging
import os
import secrets
import time
from typing import Any

import aiofiles

logger = logging.getLogger(__name__)


class BlobStorageError(Exception):
    """A generated file could not be written."""


class BlobStore:
    """Writes binaries under a public directory and returns their public URL."""

    def __init__(self, public_dir: str, public_base_url: str = ""):
        self.public_dir = public_dir
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_config(cls, tools_config: dict[str, Any]) -> BlobStore:
        conf = tools_config.get("blob_storage", {})
        return cls(conf.get("public_dir", "public"), conf.get("public_base_url", ""))

    @staticmethod
    def unique_name(prefix: str, extension: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}.{extension}"

    async def put(self, subdir: str, filename: str, data: bytes) -> str:
        if not data:
            raise BlobStorageError("Refusing to store an empty file")

        directory = os.path.join(self.public_dir, subdir)
        path = os.path.join(directory, filename)
        try:
            os.makedirs(directory, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise BlobStorageError(f"Failed to store {subdir}/{filename}: {e}") from e

        logger.info("← BlobStore: stored %s/%s (%d bytes)", subdir, filename, len(data))
        return f"{self.public_base_url}/{subdir}/{filename}"
