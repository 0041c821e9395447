"""filehashes per-request hashing task."""
from __future__ import annotations
import asyncio
import contextlib
import logging
import os
import stat
from typing import Awaitable, BinaryIO, Callable, Optional

from filehashes.algorithms import Accumulator, AlgorithmRegistry, format_checksum
from filehashes.errors import (
    AccumulatorFault, AlgorithmUnavailable, FileHashError, FileIsDirectory,
    FileOpenFailure, InvalidResumeState, NoHashAlgorithms, ReadFailure,
)
from filehashes.limiter import CancelToken, ConcurrencyLimiter
from filehashes.protocol import (
    Message,
    MSG_SCHEDULED, MSG_STARTED, MSG_RESTORED, MSG_PROGRESS_UPDATED,
    MSG_STOPPED, MSG_ERROR, MSG_DONE,
    STATE_SCHEDULED, STATE_BEFORE_START, STATE_RUNNING,
    STATE_DONE, STATE_ERROR, STATE_STOPPED,
)
from filehashes.request import ResumeState, WorkRequest

logger = logging.getLogger("filehashes.task")

DEFAULT_BUFFER_SIZE = 8 * 1024 * 1024

Emit = Callable[[Message], Awaitable[None]]


class HashTask:
    """
    Hashes one file for one WorkRequest.

    Message order: scheduled, then started (or restored + progress_updated),
    then progress_updated*, then exactly one of done / error / stopped.
    """

    def __init__(self, request: WorkRequest, limiter: ConcurrencyLimiter,
                 registry: AlgorithmRegistry, emit: Emit,
                 cancel: Optional[CancelToken] = None,
                 buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.request = request
        self.state: str = STATE_SCHEDULED
        self.summed_size: int = 0
        self.progress: int = 0
        self.cancel_token = cancel or CancelToken()
        self._limiter = limiter
        self._registry = registry
        self._emit = emit
        self._buffer_size = buffer_size
        self._file: Optional[BinaryIO] = None
        self._accumulators: dict[str, Accumulator] = {}

    async def _send(self, msg_type: str, data=None) -> None:
        await self._emit(Message(msg_type, self.request, data))

    async def run(self) -> Message:
        """Run to a terminal message, emit it and return it."""
        await self._send(MSG_SCHEDULED)

        self.state = STATE_BEFORE_START
        if not await self._wait_for_slot():
            logger.info("Stopped before start: %s", self.request.file_path)
            self.state = STATE_STOPPED
            result = Message(MSG_STOPPED, self.request, self.request)
            await self._emit(result)
            return result

        self.state = STATE_RUNNING
        try:
            result = await self._hash()
        except FileHashError as e:
            logger.warning("Hash %s failed: %s", self.request.file_path, e)
            result = Message(MSG_ERROR, self.request, str(e))
        except Exception as e:
            logger.exception("Unexpected failure hashing %s", self.request.file_path)
            result = Message(MSG_ERROR, self.request, f"{type(e).__name__}: {e}")
        finally:
            self._close_file()
            self._limiter.release()

        self.state = {MSG_DONE: STATE_DONE, MSG_STOPPED: STATE_STOPPED}.get(result.type, STATE_ERROR)
        await self._emit(result)
        return result

    async def _wait_for_slot(self) -> bool:
        """Race a limiter unit against cancellation. True means a unit is held."""
        if self.cancel_token.cancelled:
            return False
        acquire = asyncio.ensure_future(self._limiter.acquire())
        stop = asyncio.ensure_future(self.cancel_token.wait())
        try:
            await asyncio.wait({acquire, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not acquire.done():
                acquire.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await acquire

        acquired = acquire.done() and not acquire.cancelled() and acquire.exception() is None
        if acquired and self.cancel_token.cancelled:
            self._limiter.release()
            return False
        return acquired

    async def _hash(self) -> Message:
        req = self.request
        if not req.algorithms:
            raise NoHashAlgorithms()
        for alg in req.algorithms:
            if not self._registry.is_available(alg):
                raise AlgorithmUnavailable(alg)

        resume = req.resume_state
        if resume is not None:
            self._check_resume_state(resume)

        self._accumulators = {alg: self._registry.create(alg) for alg in req.algorithms}
        size = await asyncio.to_thread(self._open)

        if resume is not None:
            await self._restore(resume, size)
        else:
            await self._send(MSG_STARTED)
            logger.info("Started: %s (%d bytes)", req.file_path, size)

        if size == 0:
            if self.progress != 100:
                self.progress = 100
                await self._send(MSG_PROGRESS_UPDATED, 100)
        else:
            while True:
                if self.cancel_token.cancelled:
                    return self._stopped()
                n = await asyncio.to_thread(self._read_step)
                if n == 0:
                    break
                progress = min(100, self.summed_size * 100 // size)
                if progress > self.progress:
                    self.progress = progress
                    logger.debug("Progress %s: %d%%", req.file_path, progress)
                    await self._send(MSG_PROGRESS_UPDATED, progress)

        checksums = {
            alg: format_checksum(acc.final_checksum())
            for alg, acc in self._accumulators.items()
        }
        logger.info("Done: %s", req.file_path)
        return Message(MSG_DONE, req, checksums)

    def _check_resume_state(self, resume: ResumeState) -> None:
        if not self.request.state_matches():
            raise InvalidResumeState(
                f"state has {sorted(resume.per_algorithm_state)}, "
                f"request has {sorted(self.request.algorithms)}"
            )
        for alg in self.request.algorithms:
            if not self._registry.is_resumable(alg):
                raise InvalidResumeState(f"{alg} does not support resume")

    async def _restore(self, resume: ResumeState, size: int) -> None:
        if resume.summed_size > size:
            raise InvalidResumeState(
                f"summed size {resume.summed_size} exceeds file size {size}"
            )
        for alg, acc in self._accumulators.items():
            acc.import_state(resume.per_algorithm_state[alg])
        await asyncio.to_thread(self._seek, resume.summed_size)
        self.summed_size = resume.summed_size
        self.progress = resume.progress
        logger.info("Restored: %s at %d bytes", self.request.file_path, self.summed_size)
        await self._send(MSG_RESTORED, resume)
        await self._send(MSG_PROGRESS_UPDATED, self.progress)

    def _stopped(self) -> Message:
        req = self.request
        if all(acc.resumable for acc in self._accumulators.values()):
            state = ResumeState(
                summed_size=self.summed_size,
                progress=self.progress,
                per_algorithm_state={
                    alg: acc.export_state() for alg, acc in self._accumulators.items()
                },
            )
            resume_req = req.with_state(state)
        else:
            logger.warning("Stopped %s with non-resumable algorithms, resume restarts at 0",
                           req.file_path)
            resume_req = req.with_state(None)
        logger.info("Stopped: %s at %d bytes", req.file_path, self.summed_size)
        return Message(MSG_STOPPED, req, resume_req)

    # ---- blocking helpers, run in a worker thread ----

    def _open(self) -> int:
        path = self.request.file_path
        try:
            f = open(path, "rb")
        except IsADirectoryError as e:
            raise FileIsDirectory(path) from e
        except OSError as e:
            raise FileOpenFailure(f"{path}: {e.strerror or e}") from e
        try:
            st = os.fstat(f.fileno())
        except OSError as e:
            f.close()
            raise FileOpenFailure(f"{path}: {e.strerror or e}") from e
        if stat.S_ISDIR(st.st_mode):
            f.close()
            raise FileIsDirectory(path)
        self._file = f
        return st.st_size

    def _seek(self, offset: int) -> None:
        try:
            self._file.seek(offset, os.SEEK_SET)
        except OSError as e:
            raise ReadFailure(f"{self.request.file_path}: {e.strerror or e}") from e

    def _read_step(self) -> int:
        try:
            chunk = self._file.read(self._buffer_size)
        except OSError as e:
            raise ReadFailure(f"{self.request.file_path}: {e.strerror or e}") from e
        if not chunk:
            return 0
        for alg, acc in self._accumulators.items():
            try:
                acc.write(chunk)
            except Exception as e:
                raise AccumulatorFault(f"{alg}: {e}") from e
        self.summed_size += len(chunk)
        return len(chunk)

    def _close_file(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
