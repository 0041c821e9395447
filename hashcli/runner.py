"""hashcli: drives a Manager over a batch and collects the outcome."""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from filehashes.config import EngineConfig
from filehashes.limiter import CancelToken
from filehashes.logging_utils import describe_message
from filehashes.manager import Manager
from filehashes.protocol import (
    Message, MSG_DONE, MSG_ERROR, MSG_EXITED, MSG_STOPPED,
)
from filehashes.request import WorkRequest

logger = logging.getLogger("hashcli.runner")


@dataclass
class RunResult:
    done: list[tuple[WorkRequest, dict[str, str]]] = field(default_factory=list)
    errors: list[tuple[Optional[WorkRequest], str]] = field(default_factory=list)
    stopped: list[WorkRequest] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.errors:
            return 1
        if self.stopped:
            return 2
        return 0


async def run_requests(requests: Iterable[WorkRequest], config: EngineConfig,
                       stop_after: Optional[float] = None,
                       on_message: Optional[Callable[[Message], None]] = None) -> RunResult:
    """Hash every request; with ``stop_after`` seconds, stop whatever is still running."""
    manager = Manager(config=config)
    token = CancelToken()
    handles = manager.submit_many(requests, token)
    result = RunResult()

    if not handles:
        msg = await manager.get()
        result.errors.append((None, msg.data))
        return result

    timer = None
    if stop_after is not None:
        timer = asyncio.get_running_loop().call_later(stop_after, token.cancel)

    remaining = len(handles)
    try:
        while remaining:
            msg = await manager.get()
            logger.debug("%s", describe_message(msg))
            if on_message:
                on_message(msg)
            if msg.type == MSG_DONE:
                result.done.append((msg.request, msg.data))
            elif msg.type == MSG_ERROR:
                result.errors.append((msg.request, msg.data))
            elif msg.type == MSG_STOPPED:
                result.stopped.append(msg.data)
            elif msg.type == MSG_EXITED:
                remaining -= 1
    finally:
        if timer:
            timer.cancel()
    return result
