from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer

from cratetally.config import AnalysisConfig, ConfigError, ensure_config
from cratetally.logging import configure_logging
from cratetally.matchers.engine import MatcherKind
from cratetally.pipeline import run_analysis
from cratetally.registry import RegistryError
from cratetally.report_writer import render_json, render_table, write_report_json

app = typer.Typer(help="cratetally: syntactic pattern counts across the most downloaded crates")

FATAL_EXIT_CODE = 2


class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


def _fail(message: str) -> typer.Exit:
    typer.echo(f"[cratetally] {message}", err=True)
    return typer.Exit(code=FATAL_EXIT_CODE)


def _load_config(path: Path) -> AnalysisConfig:
    if path.exists():
        return AnalysisConfig.from_path(path)
    return AnalysisConfig.default()


def _run(
    kind: MatcherKind,
    top_n: Optional[int],
    config: Path,
    workers: Optional[int],
    timeout: Optional[float],
    repo: Optional[List[str]],
    path: Optional[Path],
    output_format: OutputFormat,
    output: Optional[Path],
    verbose: bool,
    log_file: Optional[Path],
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)
    try:
        analysis_config = _load_config(config)
    except ConfigError as exc:
        raise _fail(str(exc)) from exc
    if workers is not None:
        analysis_config.workers = workers
    if timeout is not None:
        analysis_config.timeout_seconds = timeout
    if path is not None and not path.is_dir():
        raise _fail(f"--path {path} is not a directory")

    try:
        report = run_analysis(
            kind,
            analysis_config,
            top_n=top_n,
            repos=repo or [],
            local_dir=path,
        )
    except RegistryError as exc:
        raise _fail(f"cannot list packages: {exc}") from exc
    except ValueError as exc:
        raise _fail(str(exc)) from exc

    if output is not None:
        write_report_json(report, output)
    if output_format == OutputFormat.JSON:
        typer.echo(render_json(report))
    else:
        typer.echo(render_table(report))


@app.command()
def init(
    config: Path = typer.Option(Path(".cratetally.yaml"), help="Config file to write"),
    force: bool = typer.Option(False, help="Overwrite an existing config"),
) -> None:
    ensure_config(config, force=force)
    typer.echo(f"[cratetally] config written to {config}")


@app.command()
def conversions(
    top_n: Optional[int] = typer.Option(None, "--top-n", min=1, help="Number of top crates to analyze (default 100)"),
    config: Path = typer.Option(Path(".cratetally.yaml"), help="Config file, used when present"),
    workers: Optional[int] = typer.Option(None, min=1, help="Packages processed in parallel"),
    timeout: Optional[float] = typer.Option(None, min=0.0, help="Stop starting packages after this many seconds"),
    repo: Optional[List[str]] = typer.Option(None, help="Extra GitHub repository as owner/name"),
    path: Optional[Path] = typer.Option(None, help="Analyze a local snapshot directory instead of the registry"),
    output_format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="Output format"),
    output: Optional[Path] = typer.Option(None, help="Also write the JSON report to this path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_file: Optional[Path] = typer.Option(None, help="Also log to this file"),
) -> None:
    """Count single-field tuple structs that implement From for their field."""
    _run(MatcherKind.CONVERSIONS, top_n, config, workers, timeout, repo, path, output_format, output, verbose, log_file)


@app.command("format-args")
def format_args(
    top_n: Optional[int] = typer.Option(None, "--top-n", min=1, help="Number of top crates to analyze (default 100)"),
    config: Path = typer.Option(Path(".cratetally.yaml"), help="Config file, used when present"),
    workers: Optional[int] = typer.Option(None, min=1, help="Packages processed in parallel"),
    timeout: Optional[float] = typer.Option(None, min=0.0, help="Stop starting packages after this many seconds"),
    repo: Optional[List[str]] = typer.Option(None, help="Extra GitHub repository as owner/name"),
    path: Optional[Path] = typer.Option(None, help="Analyze a local snapshot directory instead of the registry"),
    output_format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="Output format"),
    output: Optional[Path] = typer.Option(None, help="Also write the JSON report to this path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_file: Optional[Path] = typer.Option(None, help="Also log to this file"),
) -> None:
    """Classify the argument expressions of formatting macro calls."""
    _run(MatcherKind.FORMAT_ARGS, top_n, config, workers, timeout, repo, path, output_format, output, verbose, log_file)


if __name__ == "__main__":
    app()
