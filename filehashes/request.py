"""filehashes work requests, resume states and their JSON wire form."""
from __future__ import annotations
import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from filehashes.algorithms import normalize_name
from filehashes.errors import RequestDecodeError


@dataclass(frozen=True)
class ResumeState:
    """Snapshot of every accumulator after ``summed_size`` bytes."""
    summed_size: int = 0
    progress: int = 0
    per_algorithm_state: Mapping[str, bytes] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.summed_size < 0:
            raise ValueError(f"summed_size must be >= 0, got {self.summed_size}")
        if not (0 <= self.progress <= 100):
            raise ValueError(f"progress must be 0-100, got {self.progress}")
        states = {normalize_name(k): bytes(v) for k, v in self.per_algorithm_state.items()}
        object.__setattr__(self, "per_algorithm_state", MappingProxyType(states))

    def to_dict(self) -> dict[str, Any]:
        return {
            "summed_size": str(self.summed_size),
            "progress": self.progress,
            "datas": {
                alg: base64.b64encode(blob).decode("ascii")
                for alg, blob in self.per_algorithm_state.items()
            },
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ResumeState:
        if not isinstance(raw, Mapping):
            raise RequestDecodeError("stat must be an object")
        try:
            summed_size = int(raw.get("summed_size", 0))
            progress = int(raw.get("progress", 0))
            datas = raw.get("datas") or {}
            states = {
                alg: base64.b64decode(blob, validate=True)
                for alg, blob in datas.items()
            }
            return cls(summed_size=summed_size, progress=progress, per_algorithm_state=states)
        except (TypeError, ValueError, AttributeError, binascii.Error) as e:
            raise RequestDecodeError(f"stat: {e}") from e


@dataclass(frozen=True)
class WorkRequest:
    """One file to hash with a set of algorithms, optionally resumed."""
    file_path: str
    algorithms: tuple[str, ...] = ()
    resume_state: Optional[ResumeState] = None

    def __post_init__(self) -> None:
        seen: list[str] = []
        for alg in self.algorithms:
            name = normalize_name(alg)
            if name not in seen:
                seen.append(name)
        object.__setattr__(self, "file_path", str(self.file_path))
        object.__setattr__(self, "algorithms", tuple(seen))

    @classmethod
    def new(cls, file_path, algorithms: Iterable[str],
            resume_state: Optional[ResumeState] = None) -> WorkRequest:
        return cls(str(file_path), tuple(algorithms), resume_state)

    @property
    def key(self) -> str:
        """Stable id of file + algorithms, for callers that want single-flight."""
        h = hashlib.md5()
        h.update(self.file_path.encode("utf-8"))
        for alg in self.algorithms:
            h.update(alg.encode("ascii", "replace"))
        return h.hexdigest().upper()

    def state_matches(self) -> bool:
        """True when the resume state covers exactly the requested algorithms."""
        if self.resume_state is None:
            return True
        return set(self.resume_state.per_algorithm_state) == set(self.algorithms)

    def with_state(self, state: Optional[ResumeState]) -> WorkRequest:
        return WorkRequest(self.file_path, self.algorithms, state)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file_path,
            "hash_algs": list(self.algorithms),
            "stat": self.resume_state.to_dict() if self.resume_state else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> WorkRequest:
        if not isinstance(raw, Mapping):
            raise RequestDecodeError("request must be an object")
        file_path = raw.get("file")
        if not isinstance(file_path, str) or not file_path:
            raise RequestDecodeError("'file' is required")
        algs = raw.get("hash_algs") or []
        if not isinstance(algs, list) or not all(isinstance(a, str) for a in algs):
            raise RequestDecodeError("'hash_algs' must be a list of strings")
        stat_raw = raw.get("stat")
        stat = ResumeState.from_dict(stat_raw) if stat_raw is not None else None
        return cls(file_path, tuple(algs), stat)

    @classmethod
    def from_json(cls, raw: str) -> WorkRequest:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RequestDecodeError(str(e)) from e
        return cls.from_dict(data)

    def __str__(self) -> str:
        suffix = " (resume)" if self.resume_state else ""
        return f"file: {self.file_path}(hash algs: {' '.join(self.algorithms)}){suffix}"
