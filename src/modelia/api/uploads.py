"""Storage of incoming image uploads.

Uploads are streamed into the owner's directory of the secure file namespace
under a generated name (``img_<millis>-<random><ext>``), so the stored name
never depends on what the client called the file.  Type and size limits are
enforced while streaming; a rejected upload leaves nothing behind.
"""

from __future__ import annotations

import logging
import random
import time
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from modelia.core.backends import SOURCE_PREFIX
from modelia.core.config import ModeliaConfig
from modelia.core.errors import ClientError
from modelia.core.files import FileNamespace, StoredUpload

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_EXTENSIONS = {"image/jpeg": ".jpg", "image/jpg": ".jpg", "image/png": ".png"}
_KNOWN_SUFFIXES = frozenset({".jpg", ".jpeg", ".png"})


def stored_filename(original_filename: str | None, content_type: str) -> str:
    """Generate the on-disk name for an upload."""
    suffix = Path(original_filename or "").suffix.lower()
    if suffix not in _KNOWN_SUFFIXES:
        suffix = _EXTENSIONS.get(content_type, "")
    unique = f"{int(time.time() * 1000)}-{random.randint(0, 999_999_999)}"
    return f"{SOURCE_PREFIX}{unique}{suffix}"


async def store_upload(
    upload: UploadFile,
    owner_id: int,
    files: FileNamespace,
    config: ModeliaConfig,
) -> StoredUpload:
    """Write *upload* into *owner_id*'s directory.

    Args:
        upload: Multipart file from the request.
        owner_id: Authenticated user the file belongs to.
        files: Secure file namespace.
        config: Supplies the size limit and accepted content types.

    Returns:
        Description of the stored file.

    Raises:
        ClientError: Unsupported content type, or larger than the limit.
    """
    content_type = (upload.content_type or "").lower()
    if content_type not in config.allowed_image_types:
        raise ClientError("Invalid file type. Only JPEG and PNG allowed.")

    directory = files.user_dir(owner_id)
    await aiofiles.os.makedirs(directory, exist_ok=True)

    filename = stored_filename(upload.filename, content_type)
    destination = directory / filename

    size = 0
    too_large = False
    async with aiofiles.open(destination, "wb") as handle:
        while chunk := await upload.read(_CHUNK_SIZE):
            size += len(chunk)
            if size > config.max_upload_bytes:
                too_large = True
                break
            await handle.write(chunk)

    if too_large:
        await aiofiles.os.remove(destination)
        limit_mb = config.max_upload_bytes // (1024 * 1024)
        raise ClientError(f"File too large. Maximum size is {limit_mb}MB.")

    logger.debug(f"Stored upload {filename} ({size} bytes) for user {owner_id}")
    return StoredUpload(
        path=destination.resolve(),
        filename=filename,
        original_filename=upload.filename or "",
        content_type=content_type,
        size=size,
    )
