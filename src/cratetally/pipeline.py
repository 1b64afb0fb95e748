from __future__ import annotations

import time
from collections import Counter, deque
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

import httpx

from cratetally.aggregator import Tally
from cratetally.config import AnalysisConfig
from cratetally.fetcher import (
    ArchiveError,
    FetchError,
    SourceFetcher,
    Workspace,
    discover_source_files,
    load_source_file,
    packages_from_directory,
)
from cratetally.logging import get_logger
from cratetally.matchers.engine import MatcherKind, build_matcher
from cratetally.parsing import ParseError, RustParser
from cratetally.registry import RegistryClient, build_client, github_package
from cratetally.schemas import AnalysisReport, PackageOutcome, PackageRef

DEFAULT_TOP_N = 100

logger = get_logger("pipeline")


def process_package(
    ref: PackageRef,
    kind: MatcherKind,
    config: AnalysisConfig,
    fetcher: SourceFetcher,
) -> PackageOutcome:
    """Fetch, parse and match one package into a package-local tally."""
    outcome = PackageOutcome(package=ref)
    parser = RustParser(max_file_bytes=config.parse.max_file_bytes)
    matcher = build_matcher(kind, ref.name, config, parser)

    try:
        with fetcher.fetch(ref) as root:
            for rel_path in discover_source_files(root, config.include, config.exclude):
                try:
                    source = load_source_file(root, rel_path, ref.name)
                except OSError as exc:
                    outcome.file_skips["read-error"] += 1
                    logger.debug("%s: cannot read %s: %s", ref.label, rel_path, exc)
                    continue
                try:
                    tree = parser.parse(source)
                except ParseError as exc:
                    outcome.file_skips[exc.reason] += 1
                    logger.debug("%s: skipped %s", ref.label, exc)
                    continue
                matcher.collect(tree)
                outcome.files_parsed += 1
            records = matcher.finish()
    except FetchError as exc:
        outcome.skip_reason = "fetch-error"
        logger.info("skipped %s: %s", ref.label, exc)
        return outcome
    except ArchiveError as exc:
        outcome.skip_reason = "archive-error"
        logger.info("skipped %s: %s", ref.label, exc)
        return outcome

    tally = Tally()
    tally.record_all(records)
    outcome.tally = tally.counts
    outcome.summary.update(matcher.summary)
    logger.info(
        "processed %s: %d files, %d records",
        ref.label,
        outcome.files_parsed,
        tally.total,
    )
    return outcome


def _outcome_of(future: Future[PackageOutcome], ref: PackageRef) -> PackageOutcome:
    try:
        return future.result()
    except Exception:  # noqa: BLE001
        logger.exception("unexpected failure while processing %s", ref.label)
        return PackageOutcome(package=ref, skip_reason="internal-error")


def _merge_result(join: _Join, future: Future[PackageOutcome], ref: PackageRef) -> None:
    try:
        outcome = _outcome_of(future, ref)
    except KeyboardInterrupt:
        # Interrupt raised inside a worker thread.
        join.skip(ref, "interrupted")
        raise
    join.merge(outcome)


class _Join:
    """The single point where worker results meet."""

    def __init__(self, report: AnalysisReport) -> None:
        self.report = report
        self.tally = Tally()
        self.summary: Counter[str] = Counter()
        self.file_skips: Counter[str] = Counter()
        self.package_skips: Counter[str] = Counter()
        self.skipped_names: list[str] = []

    def merge(self, outcome: PackageOutcome) -> None:
        if not outcome.processed:
            self.skip(outcome.package, outcome.skip_reason or "unknown")
            return
        self.report.processed += 1
        self.report.files_parsed += outcome.files_parsed
        self.file_skips.update(outcome.file_skips)
        self.summary.update(outcome.summary)
        self.tally.merge(outcome.tally)

    def skip(self, ref: PackageRef, reason: str) -> None:
        self.package_skips[reason] += 1
        self.skipped_names.append(ref.label)

    def finalize(self) -> AnalysisReport:
        self.report.rows = self.tally.report()
        self.report.summary = dict(sorted(self.summary.items()))
        self.report.file_skips = dict(sorted(self.file_skips.items()))
        self.report.skipped_packages = dict(sorted(self.package_skips.items()))
        self.report.skipped_names = sorted(self.skipped_names)
        return self.report


def analyze_packages(
    packages: list[PackageRef],
    kind: MatcherKind,
    config: AnalysisConfig,
    fetcher: SourceFetcher,
) -> AnalysisReport:
    join = _Join(AnalysisReport(matcher=kind.value, requested=len(packages)))
    deadline = time.monotonic() + config.timeout_seconds if config.timeout_seconds > 0 else None
    pending: deque[PackageRef] = deque(packages)
    in_flight: dict[Future[PackageOutcome], PackageRef] = {}
    stop_reason: str | None = None

    executor = ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="cratetally")
    try:
        while pending or in_flight:
            if stop_reason is None and deadline is not None and time.monotonic() >= deadline:
                stop_reason = "timeout"
                logger.warning("timeout reached; %d packages will not be started", len(pending))
            while stop_reason is None and pending and len(in_flight) < config.workers:
                ref = pending.popleft()
                in_flight[executor.submit(process_package, ref, kind, config, fetcher)] = ref
            if not in_flight:
                break

            timeout = None
            if deadline is not None and stop_reason is None:
                timeout = max(0.0, deadline - time.monotonic())
            done, _ = wait(in_flight, timeout=timeout, return_when=FIRST_COMPLETED)
            for future in done:
                _merge_result(join, future, in_flight.pop(future))
    except KeyboardInterrupt:
        stop_reason = "interrupted"
        logger.warning("interrupted; finishing %d in-flight packages", len(in_flight))
        for future, ref in list(in_flight.items()):
            try:
                _merge_result(join, future, ref)
            except KeyboardInterrupt:
                continue
        in_flight.clear()
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    for ref in pending:
        join.skip(ref, stop_reason or "cancelled")
    return join.finalize()


def collect_packages(
    config: AnalysisConfig,
    client: httpx.Client,
    top_n: int | None = None,
    repos: Iterable[str] = (),
    local_dir: Path | None = None,
) -> list[PackageRef]:
    if local_dir is not None:
        packages = packages_from_directory(local_dir)
        if top_n is not None:
            packages = packages[:top_n]
    else:
        registry = RegistryClient(config.registry, client)
        packages = registry.list_top_packages(top_n or DEFAULT_TOP_N)
    packages.extend(github_package(spec) for spec in repos)
    return packages


def run_analysis(
    kind: MatcherKind,
    config: AnalysisConfig,
    top_n: int | None = None,
    repos: Iterable[str] = (),
    local_dir: Path | None = None,
    client: httpx.Client | None = None,
    workspace_dir: Path | None = None,
) -> AnalysisReport:
    owns_client = client is None
    http = client or build_client(config.registry)
    try:
        packages = collect_packages(config, http, top_n=top_n, repos=repos, local_dir=local_dir)
        logger.info("analyzing %d packages with %s", len(packages), kind.value)
        with Workspace(workspace_dir) as workspace:
            fetcher = SourceFetcher(config, http, workspace)
            return analyze_packages(packages, kind, config, fetcher)
    finally:
        if owns_client:
            http.close()
