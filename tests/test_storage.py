"""Tests for the local storage provider and file classification."""

import pytest

from studio_portal.services import (
    LocalStorageProvider,
    UpstreamError,
    ValidationError,
    detect_file_type,
    discard_on_error,
)


@pytest.fixture
def storage(tmp_path) -> LocalStorageProvider:
    return LocalStorageProvider(tmp_path / "uploads", "/static/storage/")


class TestLocalStorage:
    async def test_upload_writes_file_and_returns_metadata(self, storage, tmp_path):
        stored = await storage.upload("chat-files", b"%PDF-1.7", "Plan A.PDF", "application/pdf")

        assert stored.format == "pdf"
        assert stored.size == 8
        assert stored.id.startswith("chat-files/")
        assert stored.url == f"/static/storage/{stored.id}"
        assert (tmp_path / "uploads" / stored.id).read_bytes() == b"%PDF-1.7"

    async def test_format_falls_back_to_content_type(self, storage):
        stored = await storage.upload("chat-files", b"\x89PNG", "blob", "image/png")

        assert stored.format == "png"
        assert stored.id.endswith(".png")

    async def test_empty_upload_is_rejected(self, storage):
        with pytest.raises(ValidationError):
            await storage.upload("chat-files", b"", "empty.txt")

    async def test_delete(self, storage, tmp_path):
        stored = await storage.upload("chat-files", b"hello", "note.txt")

        assert await storage.delete(stored.id) is True
        assert not (tmp_path / "uploads" / stored.id).exists()
        assert await storage.delete(stored.id) is False

    async def test_unwritable_location_raises_upstream_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        storage = LocalStorageProvider(blocker, "/static/storage")

        with pytest.raises(UpstreamError):
            await storage.upload("chat-files", b"data", "a.txt")


class TestDiscardOnError:
    async def test_failed_block_deletes_the_upload(self, storage, tmp_path):
        stored = await storage.upload("task-submissions", b"%PDF", "survey.pdf")

        with pytest.raises(ValidationError):
            async with discard_on_error(storage, stored):
                raise ValidationError("refused")

        assert not (tmp_path / "uploads" / stored.id).exists()

    async def test_successful_block_keeps_the_upload(self, storage, tmp_path):
        stored = await storage.upload("task-submissions", b"%PDF", "survey.pdf")

        async with discard_on_error(storage, stored):
            pass

        assert (tmp_path / "uploads" / stored.id).exists()

    async def test_nothing_uploaded_still_reraises(self, storage):
        with pytest.raises(ValidationError):
            async with discard_on_error(storage, None):
                raise ValidationError("Submission requires a document")


@pytest.mark.parametrize(
    "filename, content_type, expected",
    [
        ("site.jpg", None, "image"),
        ("scan", "image/tiff", "image"),
        ("brief.pdf", "application/pdf", "pdf"),
        ("level-2.dwg", "application/octet-stream", "drawing"),
        ("budget.xlsx", None, "document"),
        ("archive.zip", "application/zip", "other"),
        (None, None, "other"),
    ],
)
def test_detect_file_type(filename, content_type, expected):
    assert detect_file_type(filename, content_type) == expected
