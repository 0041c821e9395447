"""hashcli entry point: hash files from the command line."""
from __future__ import annotations
import asyncio
import dataclasses
import logging
from pathlib import Path
from typing import Optional

import typer

from filehashes.config import HashConfig, load_config
from filehashes.errors import FileHashError
from filehashes.logging_utils import MessageLog, setup_logging
from filehashes.request import WorkRequest
from hashcli.runner import run_requests

logger = logging.getLogger("hashcli")

app = typer.Typer(add_completion=False, help="hashcli: concurrent, resumable file checksums")


def _abort(msg: str, code: int = 1) -> None:
    typer.echo(f"hashcli: {msg}", err=True)
    raise typer.Exit(code=code)


@app.command()
def hash_files(
    files: Optional[list[Path]] = typer.Argument(None, help="Files to hash"),
    algs: Optional[list[str]] = typer.Option(
        None, "--alg", "-a", help="Hash algorithm, repeatable (default from config)"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", help="Files hashed in parallel"
    ),
    buffer_size: Optional[int] = typer.Option(None, "--buffer-size", help="Read buffer size in bytes"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="TOML config file"),
    resume: Optional[list[Path]] = typer.Option(
        None, "--resume", help="JSON request printed by an earlier stopped run, repeatable"
    ),
    stop_after: Optional[float] = typer.Option(
        None, "--stop-after", help="Stop after N seconds and print resume requests as JSON"
    ),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Log directory (default from config)"),
    jsonl: bool = typer.Option(False, "--jsonl", help="Also log every message as JSONL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on console"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only warnings on console"),
) -> None:
    """
    Hash FILES with every selected algorithm and print one line per checksum.
    Stopped files are printed as JSON requests that --resume continues from.
    Exit code is 1 if any file failed and 2 if any file was stopped.
    """
    try:
        config = load_config(config_path) if config_path else HashConfig()
        engine = config.engine
        if concurrency is not None:
            engine = dataclasses.replace(engine, concurrency=concurrency)
        if buffer_size is not None:
            engine = dataclasses.replace(engine, buffer_size=buffer_size)
        selected = tuple(algs or ()) or engine.default_algorithms
        requests = [WorkRequest.new(f, selected) for f in files or ()]
        for path in resume or ():
            requests.append(WorkRequest.from_json(path.read_text(encoding="utf-8")))
    except (FileHashError, OSError) as e:
        _abort(str(e))

    log_dir = log_dir or Path(config.logging.log_dir)
    if verbose:
        console_level = logging.DEBUG
    elif quiet:
        console_level = logging.WARNING
    else:
        console_level = config.logging.level_no
    setup_logging(log_dir, console_level=console_level)
    logger.info("hashcli starting: %d request(s)", len(requests))

    trail = MessageLog(log_dir) if jsonl or config.logging.jsonl else None
    try:
        result = asyncio.run(run_requests(requests, engine, stop_after, trail))
    finally:
        if trail:
            trail.close()

    for req, checksums in result.done:
        for alg, checksum in checksums.items():
            typer.echo(f"{alg}  {checksum}  {req.file_path}")
    for req, err in result.errors:
        target = req.file_path if req else "-"
        typer.echo(f"hashcli: {target}: {err}", err=True)
    for resume_req in result.stopped:
        typer.echo(resume_req.to_json())

    raise typer.Exit(code=result.exit_code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
