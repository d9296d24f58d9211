"""Tests for modelia.api.uploads — streaming upload storage."""

from __future__ import annotations

import asyncio
import io
import re

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from modelia.api.uploads import store_upload, stored_filename
from modelia.core.errors import ClientError


def _upload(content: bytes, filename: str, content_type: str) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


class TestStoredFilename:
    def test_pattern(self):
        assert re.fullmatch(r"img_\d+-\d+\.jpg", stored_filename("Shirt.JPG", "image/jpeg"))

    def test_unknown_suffix_falls_back_to_content_type(self):
        assert stored_filename("payload.php", "image/png").endswith(".png")

    def test_names_are_unique(self):
        assert len({stored_filename("a.jpg", "image/jpeg") for _ in range(50)}) == 50


class TestStoreUpload:
    def test_writes_into_owner_directory(self, test_config, file_namespace, jpeg_bytes):
        stored = asyncio.run(
            store_upload(_upload(jpeg_bytes, "shirt.jpg", "image/jpeg"), 4, file_namespace, test_config)
        )
        assert stored.path.parent == file_namespace.user_dir(4).resolve()
        assert stored.path.read_bytes() == jpeg_bytes
        assert stored.size == len(jpeg_bytes)
        assert stored.original_filename == "shirt.jpg"

    def test_rejects_unsupported_type(self, test_config, file_namespace):
        with pytest.raises(ClientError, match="Invalid file type"):
            asyncio.run(
                store_upload(_upload(b"GIF89a", "a.gif", "image/gif"), 4, file_namespace, test_config)
            )

    def test_rejects_oversized_upload(self, test_config, file_namespace, png_bytes):
        config = test_config.model_copy(update={"max_upload_bytes": len(png_bytes) - 1})
        with pytest.raises(ClientError, match="too large"):
            asyncio.run(
                store_upload(_upload(png_bytes, "a.png", "image/png"), 4, file_namespace, config)
            )
        assert list(file_namespace.user_dir(4).iterdir()) == []
