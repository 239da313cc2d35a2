"""
Source acquisition - one canonical copy of the daemon source per fleet.

Looks up the current release in the UnrealIRCd release index, downloads the
source tarball and unpacks it into the fleet's source directory, dropping the
archive's top-level ``unrealircd-<version>/`` directory.

Offline alternatives (from settings):
    source.archive       local .tar.gz to unpack instead of downloading
    source.source_tree   already unpacked tree to copy

Any failure raises AcquisitionError. Nothing is retried.
"""

import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Tuple

import requests

from fleet.errors import AcquisitionError
from fleet.progress import Reporter, null_reporter
from fleet.settings import SourceSettings

logger = logging.getLogger("fleet.source")

CHUNK_SIZE = 64 * 1024


@dataclass
class SourceRelease:
    version: Optional[str]
    url: Optional[str]
    source_dir: Path


def find_release(index: Dict[str, Any], channel: str = "Stable") -> Tuple[str, str]:
    """
    Pick (version, src_url) from a release index.

    The index maps series -> channel -> {"version": ..., "downloads": {"src": ...}};
    the first series carrying `channel` wins.
    """
    if not isinstance(index, dict):
        raise AcquisitionError("Release index is not a JSON object")

    for series, channels in index.items():
        if not isinstance(channels, dict) or channel not in channels:
            continue
        entry = channels[channel] or {}
        version = entry.get("version")
        src = (entry.get("downloads") or {}).get("src")
        if version and src:
            logger.debug(f"Release index: series {series} {channel} -> {version}")
            return version, src

    raise AcquisitionError(f"No {channel} release with a source download in release index")


def _strip_top_level(name: str) -> Optional[PurePosixPath]:
    """Member path with the archive's top-level directory removed."""
    parts = PurePosixPath(name).parts
    if parts and parts[0] in (".", "/"):
        parts = parts[1:]
    if len(parts) <= 1:
        return None
    return PurePosixPath(*parts[1:])


def extract_source(archive_path: Path, dest_dir: Path) -> int:
    """
    Unpack a source tarball into dest_dir, stripping the top-level directory.

    Returns the number of regular files written. Members that would land
    outside dest_dir are rejected.
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()
    written = 0

    try:
        with tarfile.open(archive_path, "r:*") as tar:
            for member in tar:
                relative = _strip_top_level(member.name)
                if relative is None:
                    continue
                if ".." in relative.parts or relative.is_absolute():
                    raise AcquisitionError(f"Archive member escapes source dir: {member.name}")

                target = dest_dir / relative
                if not target.resolve().is_relative_to(root):
                    raise AcquisitionError(f"Archive member escapes source dir: {member.name}")

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = tar.extractfile(member)
                    with source, open(target, "wb") as out:
                        shutil.copyfileobj(source, out)
                    target.chmod(member.mode & 0o777 or 0o644)
                    written += 1
                elif member.issym():
                    link_target = (target.parent / member.linkname).resolve()
                    if not link_target.is_relative_to(root):
                        raise AcquisitionError(f"Archive symlink escapes source dir: {member.name}")
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if target.is_symlink() or target.exists():
                        target.unlink()
                    target.symlink_to(member.linkname)
    except (tarfile.TarError, OSError) as e:
        raise AcquisitionError(f"Extracting {archive_path} failed", cause=e)

    return written


class SourceAcquirer:
    """Fetches and unpacks the daemon source for one fleet."""

    def __init__(self, settings: Optional[SourceSettings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or SourceSettings()
        self._session = session or requests.Session()

    def latest_release(self) -> Tuple[str, str]:
        """(version, src_url) of the configured release channel."""
        url = self.settings.release_index_url
        try:
            response = self._session.get(url, timeout=self.settings.timeout_s)
            response.raise_for_status()
            index = response.json()
        except requests.RequestException as e:
            raise AcquisitionError(f"Fetching release index {url} failed", cause=e)
        except ValueError as e:
            raise AcquisitionError(f"Release index {url} is not valid JSON", cause=e)

        return find_release(index, self.settings.channel)

    def download(self, url: str, dest: Path) -> int:
        """Stream `url` into `dest`. Returns bytes written."""
        total = 0
        try:
            with self._session.get(url, stream=True, timeout=self.settings.timeout_s) as response:
                response.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            total += len(chunk)
        except requests.RequestException as e:
            raise AcquisitionError(f"Downloading {url} failed", cause=e)
        except OSError as e:
            raise AcquisitionError(f"Saving download to {dest} failed", cause=e)
        return total

    def acquire(self, source_dir: Path, report: Reporter = null_reporter) -> SourceRelease:
        """Populate `source_dir` with a fresh source tree."""
        source_dir = Path(source_dir)
        if source_dir.exists():
            logger.warning(f"Removing stale source directory {source_dir}")
            shutil.rmtree(source_dir)

        if self.settings.source_tree:
            tree = Path(self.settings.source_tree).expanduser()
            report(f"Copying source tree from {tree}")
            try:
                shutil.copytree(tree, source_dir, symlinks=True)
            except OSError as e:
                raise AcquisitionError(f"Copying source tree {tree} failed", cause=e)
            return SourceRelease(version=None, url=None, source_dir=source_dir)

        if self.settings.archive:
            archive = Path(self.settings.archive).expanduser()
            report(f"Extracting source from {archive} to {source_dir}")
            count = extract_source(archive, source_dir)
            report(f"Source extracted successfully ({count} files)")
            return SourceRelease(version=None, url=str(archive), source_dir=source_dir)

        report(f"Fetching latest UnrealIRCd version from {self.settings.release_index_url}")
        version, url = self.latest_release()
        report(f"Found {self.settings.channel.lower()} version: {version}")

        with tempfile.TemporaryDirectory(prefix="unrealircd-fleet-") as tmp:
            archive = Path(tmp) / f"unrealircd-{version}.tar.gz"
            report(f"Downloading from: {url}")
            size = self.download(url, archive)
            report(f"Downloaded {size / (1024 * 1024):.1f} MB")

            report(f"Extracting source to {source_dir}")
            count = extract_source(archive, source_dir)

        report(f"Source extracted successfully ({count} files)")
        return SourceRelease(version=version, url=url, source_dir=source_dir)
