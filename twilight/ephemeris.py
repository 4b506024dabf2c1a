"""Locating and downloading the JPL DE kernel used by the oracle."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_EPHEMERIS_URL = (
    "https://naif.jpl.nasa.gov/pub/naif/generic_kernels/spk/planets/de442.bsp"
)
DEFAULT_EPHEMERIS_FILENAME = "de442.bsp"
DEFAULT_CACHE_DIR = Path.home() / ".twilight-calendar" / "kernels"


class EphemerisAcquisitionError(RuntimeError):
    """Raised when the default ephemeris cannot be acquired."""


def _download_file(url: str, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    LOGGER.info(
        json.dumps(
            {
                "event": "ephemeris_downloading",
                "url": url,
                "destination": str(destination),
            }
        )
    )
    try:
        with httpx.stream("GET", url, timeout=httpx.Timeout(120.0, connect=30.0)) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length", "0")) or None
            received = 0
            with destination.open("wb") as handle:
                for chunk in response.iter_bytes(chunk_size=1 << 20):
                    handle.write(chunk)
                    received += len(chunk)
        LOGGER.info(
            json.dumps(
                {
                    "event": "ephemeris_downloaded",
                    "url": url,
                    "destination": str(destination),
                    "bytes": received,
                    "total": total,
                }
            )
        )
    except Exception as exc:  # pragma: no cover - network/runtime errors are rare in tests.
        if destination.exists():
            destination.unlink()
        raise EphemerisAcquisitionError(
            f"Failed to download ephemeris from {url}: {exc}"
        ) from exc


def _ensure_ephemeris(path: Path, url: str = DEFAULT_EPHEMERIS_URL) -> Path:
    """Ensure *path* references an existing BSP file or a directory holding one."""

    if path.is_file():
        if path.suffix.lower() != ".bsp":
            raise EphemerisAcquisitionError(
                f"Ephemeris file must have .bsp extension: {path}"
            )
        return path

    if path.exists() and not path.is_dir():
        raise EphemerisAcquisitionError(
            f"Ephemeris path is not a file or directory: {path}"
        )

    if path.is_dir() and any(path.glob("*.bsp")):
        return path

    if not path.exists() and path.suffix.lower() == ".bsp":
        _download_file(url, path)
        return path

    path.mkdir(parents=True, exist_ok=True)
    _download_file(url, path / DEFAULT_EPHEMERIS_FILENAME)
    return path


def resolve_ephemeris_source() -> Path:
    """Return a path to a usable ephemeris kernel, downloading it if necessary.

    ``DE_BSP`` points at a kernel file or directory; otherwise the kernel is
    kept under ``DE_BSP_CACHE_DIR`` (``~/.twilight-calendar/kernels``).
    """

    url = os.environ.get("DE_BSP_URL", DEFAULT_EPHEMERIS_URL)
    override = os.environ.get("DE_BSP")
    if override:
        return _ensure_ephemeris(Path(override).expanduser(), url)

    cache_root = Path(
        os.environ.get("DE_BSP_CACHE_DIR", str(DEFAULT_CACHE_DIR))
    ).expanduser()
    return _ensure_ephemeris(cache_root / DEFAULT_EPHEMERIS_FILENAME, url)
