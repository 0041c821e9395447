"""filehashes one-shot helpers on top of the accumulators and the manager."""
from __future__ import annotations
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

from filehashes.algorithms import AlgorithmRegistry, DEFAULT_REGISTRY, format_checksum
from filehashes.errors import NoHashAlgorithms
from filehashes.limiter import CancelToken
from filehashes.manager import Manager
from filehashes.protocol import Message, MSG_EXITED
from filehashes.request import WorkRequest


def checksum_file(path: Path, algorithms: Iterable[str],
                  registry: Optional[AlgorithmRegistry] = None,
                  chunk_size: int = 65536) -> dict[str, str]:
    """Hash a whole file in one pass, without progress or cancellation."""
    registry = registry or DEFAULT_REGISTRY
    names = WorkRequest(str(path), tuple(algorithms)).algorithms
    accumulators = {alg: registry.create(alg) for alg in names}
    if not accumulators:
        raise NoHashAlgorithms()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            for acc in accumulators.values():
                acc.write(chunk)
    return {alg: format_checksum(acc.final_checksum()) for alg, acc in accumulators.items()}


async def hash_files(requests: Iterable[WorkRequest], concurrency: Optional[int] = None,
                     buffer_size: Optional[int] = None, cancel: Optional[CancelToken] = None,
                     registry: Optional[AlgorithmRegistry] = None) -> AsyncIterator[Message]:
    """
    Hash a batch with a private Manager and yield every message until all
    tasks exited. An empty batch yields a single no-file-to-hash error.
    """
    manager = Manager(concurrency, buffer_size, registry)
    handles = manager.submit_many(requests, cancel)
    if not handles:
        yield await manager.get()
        return
    remaining = len(handles)
    while remaining:
        msg = await manager.get()
        if msg.type == MSG_EXITED:
            remaining -= 1
        yield msg
