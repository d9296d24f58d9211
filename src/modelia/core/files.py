"""Per-user secure file namespace.

Every uploaded image and every generated result lives under
``<uploads_dir>/<user_id>/<filename>`` and is exposed to clients as the
secure URL ``/files/<user_id>/<filename>`` (served under the ``/v1`` API
root).  This module owns the mapping between the two and the checks that
keep one user from reading another user's files:

1. The requester id must equal the owner segment of the URL exactly, in
   canonical decimal form (``"01"`` is not user ``1``).
2. The filename is reduced to its final path segment before use, which
   defeats ``../`` traversal supplied through the filename.
3. The resolved absolute path must still lie inside the resolved uploads
   directory, which catches symlinks pointing elsewhere.

Nothing in this module creates directories or files; writing uploads is the
job of ``modelia.api.uploads``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from modelia.core.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

FORBIDDEN_MESSAGE = "You do not have permission to access this file"
INVALID_PATH_MESSAGE = "Invalid file path"
NOT_FOUND_MESSAGE = "File not found"


@dataclass(frozen=True)
class StoredUpload:
    """An uploaded file already written into its owner's directory.

    Attributes:
        path: Absolute path on disk.
        filename: Stored name (``img_<timestamp>-<random><ext>``).
        original_filename: Name the client sent.
        content_type: Declared MIME type.
        size: Size in bytes.
    """

    path: Path
    filename: str
    original_filename: str
    content_type: str
    size: int


def filename_from_path(path: str | Path) -> str:
    """Return the final segment of *path*, treating ``\\`` as a separator too.

    Args:
        path: A filename or a path in either separator style.

    Returns:
        The base name, or an empty string when there is none.
    """
    return PurePosixPath(str(path).replace("\\", "/")).name


def canonical_user_id(user_id: object) -> str | None:
    """Return the canonical decimal string for an integer user id.

    ``bool`` is rejected even though it subclasses ``int``, as are strings,
    floats and negative numbers.  Callers compare the result against the raw
    URL segment, so ``"007"`` never matches user ``7``.
    """
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 0:
        return None
    return str(user_id)


class FileNamespace:
    """Maps ``(owner, filename)`` pairs to paths under a base directory.

    Attributes:
        base_dir: Root of the namespace (the configured uploads directory).
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def user_dir(self, owner_id: int | str) -> Path:
        """Directory holding *owner_id*'s files.  Computed only."""
        return self.base_dir / str(owner_id)

    def resolve_path(self, owner_id: int | str, filename: str) -> Path:
        """Join the base dir, the owner id, and the sanitised filename.

        Args:
            owner_id: Owner segment, as an int or the raw URL string.
            filename: Requested name; any directory components are dropped.

        Raises:
            ForbiddenError: The filename has no usable final segment.
        """
        safe_name = filename_from_path(filename)
        if safe_name in ("", ".", ".."):
            raise ForbiddenError(INVALID_PATH_MESSAGE)
        return self.user_dir(owner_id) / safe_name

    def authorize(self, requester_id: object, owner_id: int | str) -> bool:
        """Allow only when the requester owns the namespace segment."""
        requester = canonical_user_id(requester_id)
        if requester is None:
            return False
        return requester == str(owner_id)

    def serve(self, requester_id: object, owner_id: int | str, filename: str) -> Path:
        """Validate a read request and return the absolute path to send.

        Args:
            requester_id: Authenticated user id from the bearer token.
            owner_id: Owner segment taken from the URL.
            filename: Filename segment taken from the URL.

        Returns:
            Absolute path of an existing regular file inside the namespace.

        Raises:
            ForbiddenError: Wrong owner, or the path escapes the base dir.
            NotFoundError: No such file.
        """
        if not self.authorize(requester_id, owner_id):
            logger.warning(f"File access denied: user {requester_id} requested owner {owner_id}")
            raise ForbiddenError(FORBIDDEN_MESSAGE)

        candidate = self.resolve_path(owner_id, filename)

        base = self.base_dir.resolve()
        resolved = candidate.resolve()
        if not resolved.is_relative_to(base):
            logger.warning(f"Path escape attempt detected for user {requester_id}: {filename!r}")
            raise ForbiddenError(INVALID_PATH_MESSAGE)

        if not resolved.is_file():
            raise NotFoundError(NOT_FOUND_MESSAGE)

        return resolved

    def secure_url(self, owner_id: int, filename: str) -> str:
        """Client-facing URL for a file, relative to the API version root."""
        return f"/files/{owner_id}/{filename_from_path(filename)}"
