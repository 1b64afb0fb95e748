from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx

from cratetally.config import RegistryConfig
from cratetally.logging import get_logger
from cratetally.schemas import PackageRef

GITHUB_ARCHIVE_URL = "https://github.com/{owner}/{name}/archive/HEAD.tar.gz"
RETRY_STATUSES = {429, 500, 502, 503, 504}

logger = get_logger("registry")


class RegistryError(RuntimeError):
    pass


def build_client(config: RegistryConfig, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    headers = {"User-Agent": config.user_agent, "Accept": "application/json"}
    return httpx.Client(
        headers=headers,
        timeout=config.timeout,
        follow_redirects=True,
        transport=transport,
    )


def github_package(spec: str) -> PackageRef:
    owner, sep, name = spec.strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValueError(f"expected owner/name, got {spec!r}")
    return PackageRef(
        name=f"{owner}_{name}",
        version="HEAD",
        download_url=GITHUB_ARCHIVE_URL.format(owner=owner, name=name),
    )


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After", "").strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class RegistryClient:
    def __init__(
        self,
        config: RegistryConfig,
        client: httpx.Client,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.client = client
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request = 0.0

    def _throttle(self) -> None:
        with self._lock:
            wait = self._last_request + self.config.min_interval - time.monotonic()
            if wait > 0:
                self._sleep(wait)
            self._last_request = time.monotonic()

    def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        attempts = self.config.max_retries + 1
        last_error = ""
        for attempt in range(attempts):
            self._throttle()
            delay = self.config.backoff_seconds * (2**attempt)
            try:
                response = self.client.get(url, params=params)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code in RETRY_STATUSES:
                    last_error = f"HTTP {response.status_code}"
                    retry_after = _retry_after(response)
                    if retry_after is not None:
                        delay = retry_after
                elif response.is_error:
                    raise RegistryError(f"GET {url} failed with HTTP {response.status_code}")
                else:
                    try:
                        payload = response.json()
                    except ValueError as exc:
                        raise RegistryError(f"GET {url} returned invalid JSON") from exc
                    if not isinstance(payload, dict):
                        raise RegistryError(f"GET {url} returned unexpected payload")
                    return payload

            if attempt + 1 < attempts:
                logger.warning("registry request failed (%s), retrying in %.1fs", last_error, delay)
                self._sleep(delay)

        raise RegistryError(f"GET {url} failed after {attempts} attempts: {last_error}")

    def _package_from_entry(self, entry: dict[str, Any]) -> PackageRef | None:
        name = entry.get("name")
        version = entry.get("max_stable_version") or entry.get("max_version")
        if not isinstance(name, str) or not isinstance(version, str) or not name or not version:
            return None
        return PackageRef(
            name=name,
            version=version,
            download_url=f"{self.config.download_url}/{name}/{name}-{version}.crate",
            downloads=int(entry.get("downloads") or 0),
        )

    def list_top_packages(self, n: int) -> list[PackageRef]:
        if n < 1:
            raise ValueError("n must be a positive integer")

        packages: list[PackageRef] = []
        seen: set[str] = set()
        page = 1
        while len(packages) < n:
            params = {"page": page, "per_page": self.config.page_size, "sort": "downloads"}
            payload = self._get_json(f"{self.config.url}/crates", params=params)
            entries = payload.get("crates")
            if not isinstance(entries, list):
                raise RegistryError("registry listing has no 'crates' array")
            if not entries:
                raise RegistryError(f"registry returned only {len(packages)} of {n} requested packages")

            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                ref = self._package_from_entry(entry)
                # Rankings can shift between pages; keep the first sighting.
                if ref is None or ref.name in seen:
                    continue
                seen.add(ref.name)
                packages.append(ref)
                if len(packages) == n:
                    break
            logger.info("listed %d of %d packages", len(packages), n)
            page += 1

        if self.config.verify_checksums:
            packages = [self.resolve_checksum(ref) for ref in packages]
        return packages

    def resolve_checksum(self, ref: PackageRef) -> PackageRef:
        """Attach the published sha256; a failed lookup leaves the package unverified."""
        try:
            payload = self._get_json(f"{self.config.url}/crates/{ref.name}/{ref.version}")
        except RegistryError as exc:
            logger.warning("no checksum for %s: %s", ref.label, exc)
            return ref
        version = payload.get("version") or {}
        checksum = version.get("checksum") if isinstance(version, dict) else None
        if not isinstance(checksum, str) or not checksum:
            return ref
        return replace(ref, checksum=checksum)
