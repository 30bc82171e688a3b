import os

import pytest
import requests
import responses
from tenacity import wait_none

from genome_tracker.errors import ToolSetupError
from genome_tracker.tools import (
    DOWNLOAD_BASE_URL,
    ToolDownloader,
    ToolPaths,
    detect_platform,
    ensure_tools,
    locate_tools,
)

from conftest import VERSION_ONLY_TOOL, write_script

DATASETS_URL = f"{DOWNLOAD_BASE_URL}/linux-amd64/datasets"
DATAFORMAT_URL = f"{DOWNLOAD_BASE_URL}/linux-amd64/dataformat"


@pytest.fixture
def empty_path(tmp_path, monkeypatch):
    """Hide any real NCBI tools installed on the machine."""
    empty = tmp_path / "empty-path"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty))


@pytest.fixture
def tools_dir(tmp_path):
    path = tmp_path / "tools"
    path.mkdir()
    return path


def test_detect_platform():
    assert detect_platform("Linux", "x86_64") == "linux-amd64"
    assert detect_platform("Linux", "aarch64") == "linux-arm64"
    assert detect_platform("Darwin", "arm64") == "darwin-arm64"


def test_detect_platform_unsupported():
    with pytest.raises(ToolSetupError, match="operating system"):
        detect_platform("Windows", "AMD64")
    with pytest.raises(ToolSetupError, match="architecture"):
        detect_platform("Linux", "i686")


def test_locate_tools_in_tools_dir(empty_path, tools_dir):
    write_script(tools_dir / "datasets", VERSION_ONLY_TOOL)
    write_script(tools_dir / "dataformat", VERSION_ONLY_TOOL)
    paths = locate_tools(str(tools_dir))
    assert paths == ToolPaths(str(tools_dir / "datasets"), str(tools_dir / "dataformat"))


def test_locate_tools_requires_both(empty_path, tools_dir):
    write_script(tools_dir / "datasets", VERSION_ONLY_TOOL)
    assert locate_tools(str(tools_dir)) is None


def test_locate_tools_on_path(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    write_script(bin_dir / "datasets", VERSION_ONLY_TOOL)
    write_script(bin_dir / "dataformat", VERSION_ONLY_TOOL)
    monkeypatch.setenv("PATH", str(bin_dir))
    paths = locate_tools(str(tmp_path / "elsewhere"))
    assert paths.datasets == str(bin_dir / "datasets")


@responses.activate
def test_download(tools_dir):
    responses.add(responses.GET, DATASETS_URL, body=b"datasets-binary", status=200)
    responses.add(responses.GET, DATAFORMAT_URL, body=b"dataformat-binary", status=200)

    paths = ToolDownloader().download(str(tools_dir), platform_tag="linux-amd64")

    assert paths.datasets == str(tools_dir / "datasets")
    with open(paths.dataformat, "rb") as fh:
        assert fh.read() == b"dataformat-binary"
    assert os.access(paths.datasets, os.X_OK)
    assert os.access(paths.dataformat, os.X_OK)


@responses.activate
def test_download_not_found(tools_dir):
    responses.add(responses.GET, DATASETS_URL, status=404)

    with pytest.raises(ToolSetupError, match="Failed to download"):
        ToolDownloader().download(str(tools_dir), platform_tag="linux-amd64")
    assert os.listdir(tools_dir) == []


@responses.activate
def test_download_retries_connection_errors(tools_dir, monkeypatch):
    monkeypatch.setattr(
        ToolDownloader, "_get_with_retry",
        ToolDownloader._get_with_retry.retry_with(wait=wait_none()),
    )
    responses.add(responses.GET, DATASETS_URL, body=requests.ConnectionError("reset"))
    responses.add(responses.GET, DATASETS_URL, body=b"datasets-binary", status=200)
    responses.add(responses.GET, DATAFORMAT_URL, body=b"dataformat-binary", status=200)

    paths = ToolDownloader().download(str(tools_dir), platform_tag="linux-amd64")

    with open(paths.datasets, "rb") as fh:
        assert fh.read() == b"datasets-binary"


def test_ensure_tools_uses_local_tools(empty_path, tools_dir):
    write_script(tools_dir / "datasets", VERSION_ONLY_TOOL)
    write_script(tools_dir / "dataformat", VERSION_ONLY_TOOL)
    paths = ensure_tools(str(tools_dir), allow_download=False)
    assert paths.dataformat == str(tools_dir / "dataformat")


def test_ensure_tools_without_download(empty_path, tools_dir):
    with pytest.raises(ToolSetupError, match="downloading is disabled"):
        ensure_tools(str(tools_dir), allow_download=False)


def test_ensure_tools_downloads_missing_tools(empty_path, tools_dir):
    class FakeDownloader:
        def download(self, target_dir):
            return ToolPaths(
                write_script(os.path.join(target_dir, "datasets"), VERSION_ONLY_TOOL),
                write_script(os.path.join(target_dir, "dataformat"), VERSION_ONLY_TOOL),
            )

    paths = ensure_tools(str(tools_dir), downloader=FakeDownloader())
    assert paths.datasets == os.path.join(str(tools_dir), "datasets")


def test_ensure_tools_rejects_broken_binary(empty_path, tools_dir):
    write_script(tools_dir / "datasets", "exit 1\n")
    write_script(tools_dir / "dataformat", VERSION_ONLY_TOOL)
    with pytest.raises(ToolSetupError, match="--version failed"):
        ensure_tools(str(tools_dir), allow_download=False)


class _StreamedResponse:
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def iter_content(self, chunk_size=None):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


def test_download_closes_response_when_write_fails(tools_dir, monkeypatch):
    resp = _StreamedResponse([b"datasets-", OSError(28, "No space left on device")])
    monkeypatch.setattr(ToolDownloader, "_get_with_retry", lambda self, url: resp)

    with pytest.raises(ToolSetupError, match="Failed to save"):
        ToolDownloader().download(str(tools_dir), platform_tag="linux-amd64")

    assert resp.closed is True
    assert os.listdir(tools_dir) == []
