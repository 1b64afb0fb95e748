from __future__ import annotations

import hashlib
import io
import re
import shutil
import tarfile
import tempfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from cratetally.config import AnalysisConfig
from cratetally.logging import get_logger
from cratetally.schemas import PackageRef, SourceFile
from cratetally.utils import is_included, split_name_version

ARCHIVE_SUFFIXES = (".crate", ".tar.gz", ".tgz")

logger = get_logger("fetcher")


class FetchError(RuntimeError):
    pass


class ArchiveError(RuntimeError):
    pass


def _safe_label(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", value) or "package"


def _archive_stem(name: str) -> str:
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _local_path(url: str) -> Path:
    return Path(unquote(urlparse(url).path))


class Workspace:
    """Process-local temporary tree holding one subdirectory per package."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir
        self.path: Path | None = None

    def __enter__(self) -> Workspace:
        if self.base_dir is not None:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix="cratetally-", dir=self.base_dir))
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self.path is not None:
            shutil.rmtree(self.path, ignore_errors=True)
            self.path = None

    def package_dir(self, ref: PackageRef) -> Path:
        if self.path is None:
            raise RuntimeError("workspace is not open")
        return Path(tempfile.mkdtemp(prefix=f"{_safe_label(ref.label)}-", dir=self.path))


def extract_archive(data: bytes, target: Path) -> None:
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
            archive.extractall(path=target, filter="data")
    except (tarfile.TarError, EOFError, zlib.error, OSError) as exc:
        raise ArchiveError(f"cannot extract archive: {exc}") from exc


class SourceFetcher:
    def __init__(self, config: AnalysisConfig, client: httpx.Client, workspace: Workspace) -> None:
        self.config = config
        self.client = client
        self.workspace = workspace

    @contextmanager
    def fetch(self, ref: PackageRef) -> Iterator[Path]:
        """Yield a directory with the package sources, removed when the scope ends."""
        if ref.download_url.startswith("file://"):
            local = _local_path(ref.download_url)
            if local.is_dir():
                # Local snapshot directories are never ours to delete.
                yield local
                return
            try:
                data = local.read_bytes()
            except OSError as exc:
                raise FetchError(f"cannot read {local}: {exc}") from exc
        else:
            data = self._download(ref)

        target = self.workspace.package_dir(ref)
        try:
            self._verify_checksum(ref, data)
            extract_archive(data, target)
            yield target
        finally:
            shutil.rmtree(target, ignore_errors=True)

    def _download(self, ref: PackageRef) -> bytes:
        limit = self.config.fetch.max_archive_bytes
        body = bytearray()
        declared: int | None = None
        try:
            with self.client.stream("GET", ref.download_url) as response:
                if response.status_code != 200:
                    raise FetchError(f"GET {ref.download_url} returned HTTP {response.status_code}")
                raw_length = response.headers.get("Content-Length", "")
                if raw_length.isdigit() and "Content-Encoding" not in response.headers:
                    declared = int(raw_length)
                    if declared > limit:
                        raise FetchError(f"{ref.label} archive is {declared} bytes, limit is {limit}")
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > limit:
                        raise FetchError(f"{ref.label} archive exceeds {limit} bytes")
        except httpx.HTTPError as exc:
            raise FetchError(f"GET {ref.download_url} failed: {exc}") from exc

        if declared is not None and declared != len(body):
            raise FetchError(f"{ref.label} archive truncated: expected {declared} bytes, got {len(body)}")
        logger.debug("downloaded %s (%d bytes)", ref.label, len(body))
        return bytes(body)

    @staticmethod
    def _verify_checksum(ref: PackageRef, data: bytes) -> None:
        if not ref.checksum:
            return
        digest = hashlib.sha256(data).hexdigest()
        if digest != ref.checksum.lower():
            raise ArchiveError(f"{ref.label} checksum mismatch: expected {ref.checksum}, got {digest}")


def discover_source_files(root: Path, include: list[str], exclude: list[str]) -> list[str]:
    files: list[str] = []
    for path in root.rglob("*.rs"):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if is_included(rel, include, exclude):
            files.append(rel)
    return sorted(files)


def load_source_file(root: Path, rel_path: str, package: str) -> SourceFile:
    return SourceFile(package=package, path=rel_path, text=(root / rel_path).read_bytes())


def packages_from_directory(path: Path) -> list[PackageRef]:
    """One package per child directory or crate archive of a local snapshot."""
    packages: list[PackageRef] = []
    for child in sorted(path.iterdir(), key=lambda item: item.name):
        if child.name.startswith("."):
            continue
        if child.is_dir():
            stem = child.name
        elif child.is_file() and child.name.endswith(ARCHIVE_SUFFIXES):
            stem = _archive_stem(child.name)
        else:
            continue
        name, version = split_name_version(stem)
        packages.append(PackageRef(name=name, version=version, download_url=child.resolve().as_uri()))
    return packages
