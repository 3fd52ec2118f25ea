"""
Tests for the file content reader and the element file browser.
"""

import asyncio
import base64
from unittest.mock import AsyncMock, Mock

import pytest

from upload_relay.core.domain.sessions import FileHandle
from upload_relay.core.exceptions import ReadFailure
from upload_relay.infrastructure.services.upload import ElementFileBrowser, FileContentReader


class TestFileContentReader:
    """Test cases for FileContentReader."""

    @pytest.fixture
    def reader(self):
        return FileContentReader()

    @pytest.mark.asyncio
    async def test_read_text_file(self, reader, tmp_path):
        """Test a text file is read into a base64 data URI."""
        path = tmp_path / "hello.txt"
        path.write_bytes(b"hello")

        encoded = await reader.read("u1", FileHandle.from_path(path))

        assert encoded == "data:text/plain;base64,aGVsbG8="

    @pytest.mark.asyncio
    async def test_declared_content_type_wins(self, reader, tmp_path):
        path = tmp_path / "hello.txt"
        path.write_bytes(b"hello")

        encoded = await reader.read("u1", FileHandle.from_path(path, content_type="text/markdown"))

        assert encoded.startswith("data:text/markdown;base64,")

    @pytest.mark.asyncio
    async def test_unknown_extension_uses_default(self, tmp_path):
        path = tmp_path / "blob.unknownext"
        path.write_bytes(b"\x00")
        reader = FileContentReader(default_content_type="application/x-test")

        encoded = await reader.read("u1", FileHandle.from_path(path))

        assert encoded.startswith("data:application/x-test;base64,")

    @pytest.mark.asyncio
    async def test_read_in_memory_content(self, reader):
        handle = FileHandle.from_bytes("a.bin", b"\x01\x02", "application/octet-stream")

        encoded = await reader.read("u1", handle)

        assert encoded == "data:application/octet-stream;base64," + base64.b64encode(b"\x01\x02").decode()

    @pytest.mark.asyncio
    async def test_missing_file_fails(self, reader, tmp_path):
        """Test an unreadable file raises ReadFailure carrying the upload id."""
        with pytest.raises(ReadFailure) as exc_info:
            await reader.read("u9", FileHandle.from_path(tmp_path / "missing.txt"))

        assert exc_info.value.upload_id == "u9"
        assert "missing.txt" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_handle_without_source_fails(self, reader):
        with pytest.raises(ReadFailure):
            await reader.read("u1", FileHandle(name="nothing"))

    @pytest.mark.asyncio
    async def test_size_limit(self, tmp_path):
        path = tmp_path / "big.bin"
        path.write_bytes(b"x" * 11)
        reader = FileContentReader(max_size=10)

        with pytest.raises(ReadFailure) as exc_info:
            await reader.read("u1", FileHandle.from_path(path))

        assert "limit is 10" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_concurrent_reads_are_independent(self, reader, tmp_path):
        """Test concurrent reads for distinct ids return their own contents."""
        handles = {}
        for i in range(10):
            path = tmp_path / f"file{i}.txt"
            path.write_bytes(f"content-{i}".encode())
            handles[f"u{i}"] = FileHandle.from_path(path)

        results = await asyncio.gather(*(reader.read(uid, h) for uid, h in handles.items()))

        for i, encoded in enumerate(results):
            payload = encoded.split(",", 1)[1]
            assert base64.b64decode(payload) == f"content-{i}".encode()


class TestElementFileBrowser:
    """Test cases for ElementFileBrowser."""

    @pytest.mark.asyncio
    async def test_open_registered_element(self):
        browser = ElementFileBrowser()
        picker = Mock()
        browser.register_element("file-input", picker)

        assert await browser.open("file-input") is True
        picker.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_open_async_picker(self):
        browser = ElementFileBrowser()
        picker = AsyncMock()
        browser.register_element("file-input", picker)

        assert await browser.open("file-input") is True
        picker.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_open_unknown_element(self):
        browser = ElementFileBrowser()

        assert await browser.open("nope") is False

    def test_unregister(self):
        browser = ElementFileBrowser()
        browser.register_element("a", Mock())

        assert browser.elements() == ["a"]
        assert browser.unregister_element("a") is True
        assert browser.unregister_element("a") is False
        assert browser.elements() == []
