from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path

import httpx
import pytest

from cratetally.config import AnalysisConfig
from cratetally.fetcher import (
    ArchiveError,
    FetchError,
    SourceFetcher,
    Workspace,
    discover_source_files,
    packages_from_directory,
)
from cratetally.schemas import PackageRef

URL = "https://static.test/crates/demo/demo-1.0.0.crate"


def _crate(files: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _fetcher(workspace: Workspace, handler, config: AnalysisConfig | None = None) -> SourceFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SourceFetcher(config or AnalysisConfig.default(), client, workspace)


def _serve(body: bytes, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=body)

    return handler


def test_fetch_extracts_and_cleans_up(tmp_path) -> None:
    body = _crate({"demo-1.0.0/src/lib.rs": "pub struct A(u8);\n", "demo-1.0.0/Cargo.toml": "[package]\n"})
    ref = PackageRef(name="demo", version="1.0.0", download_url=URL)

    with Workspace(tmp_path) as workspace:
        fetcher = _fetcher(workspace, _serve(body))
        with fetcher.fetch(ref) as root:
            assert discover_source_files(root, ["**/*.rs"], []) == ["demo-1.0.0/src/lib.rs"]
            extracted = root
        assert not extracted.exists()
        workspace_path = workspace.path
    assert not workspace_path.exists()


def test_fetch_cleans_up_when_the_caller_fails(tmp_path) -> None:
    ref = PackageRef(name="demo", version="1.0.0", download_url=URL)

    with Workspace(tmp_path) as workspace:
        fetcher = _fetcher(workspace, _serve(_crate({"demo/src/lib.rs": ""})))
        with pytest.raises(RuntimeError):
            with fetcher.fetch(ref) as root:
                extracted = root
                raise RuntimeError("matcher blew up")
        assert not extracted.exists()


def test_missing_archive_is_a_fetch_error(tmp_path) -> None:
    ref = PackageRef(name="demo", version="1.0.0", download_url=URL)

    with Workspace(tmp_path) as workspace:
        with pytest.raises(FetchError, match="HTTP 404"):
            with _fetcher(workspace, _serve(b"", status=404)).fetch(ref):
                pass


def test_corrupt_archive_is_an_archive_error(tmp_path) -> None:
    ref = PackageRef(name="demo", version="1.0.0", download_url=URL)

    with Workspace(tmp_path) as workspace:
        with pytest.raises(ArchiveError):
            with _fetcher(workspace, _serve(b"definitely not gzip")).fetch(ref):
                pass
        assert list(workspace.path.iterdir()) == []


def test_oversized_archive_is_rejected(tmp_path) -> None:
    config = AnalysisConfig.default()
    config.fetch.max_archive_bytes = 16
    ref = PackageRef(name="demo", version="1.0.0", download_url=URL)

    with Workspace(tmp_path) as workspace:
        with pytest.raises(FetchError, match="limit"):
            with _fetcher(workspace, _serve(b"x" * 64), config).fetch(ref):
                pass


def test_short_body_is_a_fetch_error(tmp_path) -> None:
    ref = PackageRef(name="demo", version="1.0.0", download_url=URL)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Length": "4096"}, content=b"partial")

    with Workspace(tmp_path) as workspace:
        with pytest.raises(FetchError, match="truncated"):
            with _fetcher(workspace, handler).fetch(ref):
                pass
        assert list(workspace.path.iterdir()) == []


def test_checksum_mismatch_is_rejected(tmp_path) -> None:
    body = _crate({"demo/src/lib.rs": ""})
    good = PackageRef(name="demo", version="1.0.0", download_url=URL, checksum=hashlib.sha256(body).hexdigest())
    bad = PackageRef(name="demo", version="1.0.0", download_url=URL, checksum="0" * 64)

    with Workspace(tmp_path) as workspace:
        fetcher = _fetcher(workspace, _serve(body))
        with fetcher.fetch(good) as root:
            assert (root / "demo" / "src" / "lib.rs").exists()
        with pytest.raises(ArchiveError, match="checksum"):
            with fetcher.fetch(bad):
                pass


def test_local_snapshot_entries(tmp_path) -> None:
    (tmp_path / "alpha-1.2.3" / "src").mkdir(parents=True)
    (tmp_path / "alpha-1.2.3" / "src" / "lib.rs").write_text("", encoding="utf-8")
    (tmp_path / "beta-0.1.0.crate").write_bytes(_crate({"beta-0.1.0/src/lib.rs": "fn f() {}\n"}))
    (tmp_path / ".hidden").mkdir()
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    packages = packages_from_directory(tmp_path)

    assert [(item.name, item.version) for item in packages] == [("alpha", "1.2.3"), ("beta", "0.1.0")]
    with Workspace(tmp_path / "work") as workspace:
        fetcher = _fetcher(workspace, _serve(b""))
        with fetcher.fetch(packages[0]) as root:
            assert root == (tmp_path / "alpha-1.2.3").resolve()
        assert root.exists()
        with fetcher.fetch(packages[1]) as root:
            assert discover_source_files(root, ["**/*.rs"], []) == ["beta-0.1.0/src/lib.rs"]


def test_discover_source_files_honours_patterns(tmp_path) -> None:
    for rel in ["src/lib.rs", "src/bin/tool.rs", "target/debug/build.rs", "build.rs", "README.md"]:
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")

    files = discover_source_files(Path(tmp_path), ["**/*.rs", "*.rs"], ["target/**", "**/target/**"])

    assert files == ["build.rs", "src/bin/tool.rs", "src/lib.rs"]
