"""filehashes message definitions and JSON envelope."""
from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Optional

from filehashes.request import ResumeState, WorkRequest

# ---- Message types, in the order a single task can emit them ----
MSG_SCHEDULED = "scheduled"
MSG_STARTED = "started"
MSG_RESTORED = "restored"
MSG_PROGRESS_UPDATED = "progress_updated"
MSG_STOPPED = "stopped"
MSG_ERROR = "error"
MSG_DONE = "done"
MSG_EXITED = "exited"

VALID_TYPES = {
    MSG_SCHEDULED, MSG_STARTED, MSG_RESTORED, MSG_PROGRESS_UPDATED,
    MSG_STOPPED, MSG_ERROR, MSG_DONE, MSG_EXITED,
}
TERMINAL_TYPES = {MSG_STOPPED, MSG_ERROR, MSG_DONE}

# ---- Task states ----
STATE_SCHEDULED = "scheduled"
STATE_BEFORE_START = "before_start"
STATE_RUNNING = "running"
STATE_DONE = "done"
STATE_ERROR = "error"
STATE_STOPPED = "stopped"
STATE_EXITED = "exited"

VALID_STATES = {
    STATE_SCHEDULED, STATE_BEFORE_START, STATE_RUNNING,
    STATE_DONE, STATE_ERROR, STATE_STOPPED, STATE_EXITED,
}


@dataclass(frozen=True)
class Message:
    """One event on the outbound stream.

    ``data`` depends on ``type``:

    - error: description string
    - progress_updated: percent (0-100)
    - restored: the ResumeState the task resumed from
    - stopped: a WorkRequest carrying the state to resume from
    - done: dict of algorithm -> checksum string
    - others: None
    """
    type: str
    request: Optional[WorkRequest] = None
    data: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    def to_dict(self) -> dict[str, Any]:
        data = self.data
        if isinstance(data, (WorkRequest, ResumeState)):
            data = data.to_dict()
        elif isinstance(data, dict):
            data = dict(data)
        return {
            "type": self.type,
            "request": self.request.to_dict() if self.request else None,
            "data": data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __str__(self) -> str:
        target = self.request.file_path if self.request else "-"
        if self.data is None:
            return f"{self.type} {target}"
        return f"{self.type} {target}: {self.data}"


def parse_message(raw: str) -> Message:
    """Decode a message produced by ``Message.to_json``."""
    data = json.loads(raw)
    msg_type = data["type"]
    if msg_type not in VALID_TYPES:
        raise ValueError(f"unknown message type: {msg_type}")
    request = WorkRequest.from_dict(data["request"]) if data.get("request") else None
    payload = data.get("data")
    if msg_type == MSG_STOPPED and payload is not None:
        payload = WorkRequest.from_dict(payload)
    elif msg_type == MSG_RESTORED and payload is not None:
        payload = ResumeState.from_dict(payload)
    return Message(msg_type, request, payload)
