"""filehashes digest algorithm adapters and registry.

Every algorithm is wrapped in an accumulator with the same small surface:
``write``, ``final_checksum``, ``export_state`` and ``import_state``. Only
resumable accumulators support the last two; a stopped task needs them to
hand back a state that continues exactly where it left off.
"""
from __future__ import annotations
import hashlib
import io
import logging
import pickle
import struct
import zlib
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol, runtime_checkable

import rehash

from filehashes.errors import AlgorithmUnavailable, InvalidResumeState

logger = logging.getLogger("filehashes.algorithms")


@runtime_checkable
class Accumulator(Protocol):
    """Mutable digest state of one algorithm instance."""

    name: str
    resumable: bool

    def write(self, data: bytes) -> None: ...

    def final_checksum(self) -> bytes: ...

    def export_state(self) -> bytes: ...

    def import_state(self, blob: bytes) -> None: ...


class _RehashUnpickler(pickle.Unpickler):
    """Only resolves classes from the rehash package.

    State blobs come back from callers (possibly over a socket), so arbitrary
    globals must never be loaded.
    """

    _ALLOWED_EXTRA = {("copyreg", "_reconstructor"), ("builtins", "object")}

    def find_class(self, module: str, name: str):
        if module == "rehash" or module.startswith("rehash.") or (module, name) in self._ALLOWED_EXTRA:
            return super().find_class(module, name)
        raise pickle.UnpicklingError(f"global '{module}.{name}' is not allowed in hash state")


class ResumableHashAccumulator:
    """Cryptographic digest backed by a picklable ``rehash`` object."""

    resumable = True

    def __init__(self, name: str):
        self.name = name
        self._hash = getattr(rehash, name)()

    def write(self, data: bytes) -> None:
        self._hash.update(data)

    def final_checksum(self) -> bytes:
        # digest() works on a copy of the context, the running state is kept
        return self._hash.digest()

    def export_state(self) -> bytes:
        return pickle.dumps(self._hash, protocol=pickle.HIGHEST_PROTOCOL)

    def import_state(self, blob: bytes) -> None:
        try:
            restored = _RehashUnpickler(io.BytesIO(blob)).load()
        except Exception as e:
            raise InvalidResumeState(f"{self.name}: {e}") from e
        if type(restored) is not type(self._hash) or getattr(restored, "name", None) != self._hash.name:
            raise InvalidResumeState(f"{self.name}: state belongs to another algorithm")
        self._hash = restored


class ChecksumAccumulator:
    """zlib running checksum (crc32 / adler32). State is the 32-bit value."""

    resumable = True

    _FUNCS: dict[str, tuple[Callable[[bytes, int], int], int]] = {
        "crc32": (zlib.crc32, 0),
        "adler32": (zlib.adler32, 1),
    }

    def __init__(self, name: str):
        self.name = name
        self._func, self._value = self._FUNCS[name]

    def write(self, data: bytes) -> None:
        self._value = self._func(data, self._value) & 0xFFFFFFFF

    def final_checksum(self) -> bytes:
        return struct.pack(">I", self._value)

    def export_state(self) -> bytes:
        return struct.pack(">I", self._value)

    def import_state(self, blob: bytes) -> None:
        if len(blob) != 4:
            raise InvalidResumeState(f"{self.name}: expected 4 bytes of state, got {len(blob)}")
        (self._value,) = struct.unpack(">I", blob)


class HashlibAccumulator:
    """Plain hashlib digest. hashlib cannot serialize its contexts."""

    resumable = False

    def __init__(self, name: str):
        self.name = name
        self._hash = hashlib.new(name)

    def write(self, data: bytes) -> None:
        self._hash.update(data)

    def final_checksum(self) -> bytes:
        return self._hash.digest()

    def export_state(self) -> bytes:
        raise InvalidResumeState(f"{self.name} does not support resume")

    def import_state(self, blob: bytes) -> None:
        raise InvalidResumeState(f"{self.name} does not support resume")


@dataclass(frozen=True)
class AlgorithmSpec:
    name: str
    factory: Callable[[], Accumulator]
    resumable: bool


class AlgorithmRegistry:
    """Maps algorithm ids to accumulator factories."""

    def __init__(self, specs: Iterable[AlgorithmSpec] = ()):
        self._specs: dict[str, AlgorithmSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: AlgorithmSpec) -> None:
        self._specs[normalize_name(spec.name)] = spec

    def get(self, name: str) -> Optional[AlgorithmSpec]:
        return self._specs.get(normalize_name(name))

    def is_available(self, name: str) -> bool:
        return self.get(name) is not None

    def is_resumable(self, name: str) -> bool:
        spec = self.get(name)
        return spec is not None and spec.resumable

    def names(self) -> list[str]:
        return sorted(self._specs)

    def create(self, name: str) -> Accumulator:
        spec = self.get(name)
        if spec is None:
            raise AlgorithmUnavailable(name)
        return spec.factory()


def normalize_name(name: str) -> str:
    return name.strip().lower().replace("-", "")


def format_checksum(digest: bytes) -> str:
    """Canonical checksum text: upper-case hex."""
    return digest.hex().upper()


REHASH_ALGORITHMS = ("md5", "sha1", "sha224", "sha256", "sha384", "sha512")
ZLIB_ALGORITHMS = ("crc32", "adler32")
HASHLIB_ALGORITHMS = ("blake2b", "blake2s", "sha3_256", "sha3_512")


def _rehash_factory(name: str) -> Callable[[], Accumulator]:
    return lambda: ResumableHashAccumulator(name)


def _zlib_factory(name: str) -> Callable[[], Accumulator]:
    return lambda: ChecksumAccumulator(name)


def _hashlib_factory(name: str) -> Callable[[], Accumulator]:
    return lambda: HashlibAccumulator(name)


def rehash_supported(name: str) -> bool:
    """True when rehash can build this digest on the linked OpenSSL.

    rehash 1.x reaches into OpenSSL 1.x context structs and refuses to run
    against OpenSSL 3, so availability is only known by constructing one.
    """
    factory = getattr(rehash, name, None)
    if factory is None:
        return False
    try:
        factory()
    except (NotImplementedError, OSError, ValueError, AttributeError) as e:
        logger.warning("rehash cannot provide %s, it will not be resumable: %s", name, e)
        return False
    return True


def build_default_registry() -> AlgorithmRegistry:
    registry = AlgorithmRegistry()
    for name in REHASH_ALGORITHMS:
        if rehash_supported(name):
            registry.register(AlgorithmSpec(name, _rehash_factory(name), resumable=True))
        elif name in hashlib.algorithms_available:
            # plain digest still works, stopping it restarts from byte 0
            registry.register(AlgorithmSpec(name, _hashlib_factory(name), resumable=False))
    for name in ZLIB_ALGORITHMS:
        registry.register(AlgorithmSpec(name, _zlib_factory(name), resumable=True))
    for name in HASHLIB_ALGORITHMS:
        if name in hashlib.algorithms_available:
            registry.register(AlgorithmSpec(name, _hashlib_factory(name), resumable=False))
    return registry


DEFAULT_REGISTRY = build_default_registry()
