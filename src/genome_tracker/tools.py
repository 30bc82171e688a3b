"""Locate or install the NCBI `datasets` and `dataformat` executables."""

import logging
import os
import platform
import shutil
import stat
import subprocess
from dataclasses import dataclass
from typing import Optional

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from genome_tracker.errors import ToolSetupError

logger = logging.getLogger(__name__)

DOWNLOAD_BASE_URL = "https://ftp.ncbi.nlm.nih.gov/pub/datasets/command-line/v2"
TOOL_NAMES = ("datasets", "dataformat")
SUPPORTED_SYSTEMS = ("linux", "darwin")
ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


@dataclass
class ToolPaths:
    datasets: str
    dataformat: str


def detect_platform(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Return the NCBI download directory name, e.g. ``linux-amd64``."""
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    if system not in SUPPORTED_SYSTEMS:
        raise ToolSetupError(
            f"Unsupported operating system: {system} (supported: {', '.join(SUPPORTED_SYSTEMS)})"
        )
    arch = ARCH_ALIASES.get(machine)
    if arch is None:
        raise ToolSetupError(f"Unsupported architecture: {machine} (supported: x86_64, aarch64)")
    return f"{system}-{arch}"


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def locate_tools(tools_dir: str = ".") -> Optional[ToolPaths]:
    """Find both tools on PATH, then in ``tools_dir``. None if either is missing."""
    on_path = [shutil.which(name) for name in TOOL_NAMES]
    if all(on_path):
        logger.debug("NCBI tools found in PATH")
        return ToolPaths(*on_path)

    local = [os.path.abspath(os.path.join(tools_dir, name)) for name in TOOL_NAMES]
    if all(_is_executable(p) for p in local):
        logger.debug("NCBI tools found in %s", tools_dir)
        return ToolPaths(*local)
    return None


def verify_tools(paths: ToolPaths) -> None:
    for exe in (paths.datasets, paths.dataformat):
        try:
            proc = subprocess.run(
                [exe, "--version"], stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                text=True, timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ToolSetupError(f"Cannot run {exe}: {exc}") from exc
        if proc.returncode != 0:
            raise ToolSetupError(f"{exe} --version failed: {proc.stderr.strip()}")
        logger.debug("%s %s", os.path.basename(exe), proc.stdout.strip())


class ToolDownloader:
    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "genome-tracker/0.1.0"})

    def download(self, tools_dir: str = ".", platform_tag: Optional[str] = None) -> ToolPaths:
        platform_tag = platform_tag or detect_platform()
        logger.info("Downloading NCBI tools for %s into %s", platform_tag, tools_dir)
        os.makedirs(tools_dir, exist_ok=True)
        paths = [
            self._download_one(f"{DOWNLOAD_BASE_URL}/{platform_tag}/{name}", os.path.join(tools_dir, name))
            for name in TOOL_NAMES
        ]
        return ToolPaths(*paths)

    def _download_one(self, url: str, dest: str) -> str:
        part = f"{dest}.part"
        try:
            with self._get_with_retry(url) as resp, open(part, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=1 << 20):
                    fh.write(chunk)
            mode = os.stat(part).st_mode
            os.chmod(part, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            os.replace(part, dest)
        except requests.RequestException as exc:
            raise ToolSetupError(f"Failed to download {url}: {exc}") from exc
        except OSError as exc:
            raise ToolSetupError(f"Failed to save {dest}: {exc}") from exc
        finally:
            if os.path.exists(part):
                os.remove(part)
        logger.info("Downloaded %s", os.path.basename(dest))
        return os.path.abspath(dest)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _get_with_retry(self, url: str) -> requests.Response:
        resp = self._session.get(url, stream=True, timeout=60)
        if resp.status_code == 429:
            resp.close()
            raise requests.ConnectionError("Rate limited (429)")
        try:
            resp.raise_for_status()
        except requests.HTTPError:
            resp.close()
            raise
        return resp


def ensure_tools(
    tools_dir: str = ".",
    allow_download: bool = True,
    downloader: Optional[ToolDownloader] = None,
) -> ToolPaths:
    """Return usable tool paths, downloading them into ``tools_dir`` if needed."""
    paths = locate_tools(tools_dir)
    if paths is None:
        if not allow_download:
            raise ToolSetupError(
                f"NCBI datasets/dataformat not found on PATH or in {tools_dir} and downloading is disabled"
            )
        logger.info("NCBI tools not found, downloading")
        paths = (downloader or ToolDownloader()).download(tools_dir)
    verify_tools(paths)
    return paths
