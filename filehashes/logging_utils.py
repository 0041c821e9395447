"""filehashes logging: the shared engine log and the per-message JSONL trail."""
from __future__ import annotations
import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import IO, Any, Iterable, Optional

from filehashes.protocol import (
    Message, MSG_DONE, MSG_ERROR, MSG_PROGRESS_UPDATED, MSG_RESTORED, MSG_STOPPED,
)

LOGGER_NAMES = ("filehashes", "hashcli")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_dir: Path, console_level: int = logging.INFO, level: int = logging.DEBUG,
                  names: Iterable[str] = LOGGER_NAMES) -> Path:
    """Route the engine and CLI loggers to ``filehashes.log`` and the console.

    The file rotates at 5MB, keeping 5 backups. Loggers that already carry
    handlers are left alone. Returns the log file path.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "filehashes.log"
    fmt = logging.Formatter(LOG_FORMAT)

    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8", delay=True
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.setFormatter(fmt)

    for name in names:
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if not lg.handlers:
            lg.addHandler(fh)
            lg.addHandler(ch)
    return log_file


def describe_message(msg: Message) -> str:
    """One-line text of an engine message, for log output."""
    target = msg.request.file_path if msg.request else "-"
    if msg.type == MSG_PROGRESS_UPDATED:
        return f"{msg.type} {target}: {msg.data}%"
    if msg.type == MSG_DONE:
        sums = " ".join(f"{alg}={value}" for alg, value in msg.data.items())
        return f"{msg.type} {target}: {sums}"
    if msg.type == MSG_RESTORED:
        return f"{msg.type} {target}: from byte {msg.data.summed_size} ({msg.data.progress}%)"
    if msg.type == MSG_STOPPED:
        state = msg.data.resume_state if msg.data else None
        if state is None:
            return f"{msg.type} {target}: no resume state"
        return f"{msg.type} {target}: at byte {state.summed_size} ({state.progress}%)"
    if msg.type == MSG_ERROR:
        return f"{msg.type} {target}: {msg.data}"
    return f"{msg.type} {target}"


def message_record(msg: Message, ts_ms: Optional[int] = None) -> dict[str, Any]:
    """JSON-ready record of a message, stamped with wall-clock milliseconds."""
    record = msg.to_dict()
    record["ts_utc_ms"] = int(time.time() * 1000) if ts_ms is None else ts_ms
    return record


class MessageLog:
    """Appends engine messages to ``filehashes-YYYY-MM-DD.jsonl`` in ``log_dir``.

    Instances are callable, so one can be handed straight to anything taking
    an ``on_message`` callback. A new file is opened when the date changes.
    """

    def __init__(self, log_dir: Path):
        self.log_dir = log_dir
        self._day: Optional[str] = None
        self._fh: Optional[IO[str]] = None

    def path_for(self, day: str) -> Path:
        return self.log_dir / f"filehashes-{day}.jsonl"

    def write(self, msg: Message) -> None:
        day = time.strftime("%Y-%m-%d")
        if day != self._day:
            self.close()
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path_for(day), "a", encoding="utf-8")
            self._day = day
        self._fh.write(json.dumps(message_record(msg)) + "\n")
        self._fh.flush()

    __call__ = write

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
        self._fh = None
        self._day = None

    def __enter__(self) -> "MessageLog":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
