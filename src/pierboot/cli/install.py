"""Platform detection and runtime installation for pierboot."""

from __future__ import annotations

import platform
import shutil
import tarfile
import tempfile
from pathlib import Path

import httpx
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pierboot.cli.boot.logging import BootLogComponent, get_logger
from pierboot.constants import DOWNLOAD_MAX_ATTEMPTS, RUNTIME_DOWNLOAD_URL
from pierboot.errors import DownloadError, UnsupportedPlatformError
from pierboot.models import LaunchConfig, PlatformInfo
from pierboot.utils import ensure_dir, progress_spinner

logger = get_logger(BootLogComponent.INSTALL)

# (uname -s, uname -m) -> build name on the install server
_BUILD_TARGETS: dict[tuple[str, str], str] = {
    ("Linux", "x86_64"): "linux-x86_64",
    ("Linux", "aarch64"): "linux-aarch64",
    ("Darwin", "x86_64"): "macos-x86_64",
    ("Darwin", "arm64"): "macos-aarch64",
}


def detect_platform(system: str | None = None, machine: str | None = None) -> PlatformInfo:
    """Map the host OS/architecture to a runtime build.

    Raises:
        UnsupportedPlatformError: no runtime is published for this host
    """
    system = system or platform.system()
    machine = machine or platform.machine()
    target = _BUILD_TARGETS.get((system, machine))
    if target is None:
        raise UnsupportedPlatformError(system, machine)
    return PlatformInfo(
        system=system,
        machine=machine,
        download_url=RUNTIME_DOWNLOAD_URL.format(target=target),
    )


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempts to the retry logger.

    Args:
        retry_state: Tenacity retry state
    """
    if retry_state.outcome and retry_state.outcome.failed:
        exception = retry_state.outcome.exception()
        get_logger(BootLogComponent.RETRY).error(
            f"Attempt {retry_state.attempt_number} failed with error: {exception}. Retrying..."
        )


@retry(
    stop=stop_after_attempt(DOWNLOAD_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    before_sleep=log_retry_attempt,
    reraise=True,
)
def fetch_archive(url: str, dest: Path) -> None:
    """Stream url to dest, following the install server's redirects."""
    with httpx.stream("GET", url, follow_redirects=True, timeout=60.0) as response:
        response.raise_for_status()
        with dest.open("wb") as out:
            for chunk in response.iter_bytes():
                out.write(chunk)


def extract_runtime(archive: Path, dest: Path) -> None:
    """Extract the single binary from a .tar.gz archive as dest (mode 0755).

    Never overwrites an existing dest.
    """
    with tarfile.open(archive, "r:gz") as tar:
        member = next((m for m in tar.getmembers() if m.isfile()), None)
        if member is None:
            raise DownloadError(f"Runtime archive {archive.name} contains no files.")
        source = tar.extractfile(member)
        if source is None:
            raise DownloadError(f"Cannot read {member.name} from runtime archive.")
        with source, dest.open("xb") as out:
            shutil.copyfileobj(source, out)
    dest.chmod(0o755)


def ensure_runtime(config: LaunchConfig, platform_info: PlatformInfo) -> Path:
    """Download the runtime into the work dir unless it is already there."""
    runtime = config.runtime_path
    if runtime.exists():
        logger.debug(f"Runtime already present at {runtime}")
        return runtime

    ensure_dir(config.work_dir)
    url = platform_info.download_url
    with progress_spinner("Downloading Urbit runtime...", "✅ Runtime downloaded"):
        with tempfile.TemporaryDirectory(dir=config.work_dir) as tmp:
            archive = Path(tmp) / "runtime.tar.gz"
            try:
                fetch_archive(url, archive)
            except httpx.HTTPError as e:
                raise DownloadError(
                    f"Failed to download runtime from {url}: {e}",
                    hint="Check your network connection and try again",
                ) from e
            try:
                extract_runtime(archive, runtime)
            except (tarfile.TarError, OSError) as e:
                raise DownloadError(f"Failed to unpack runtime: {e}") from e
    return runtime
