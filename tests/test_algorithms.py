"""Tests for digest accumulators and the algorithm registry."""
import hashlib
import os
import pickle
import zlib

import pytest

from filehashes import algorithms
from filehashes.algorithms import (
    AlgorithmRegistry, AlgorithmSpec, ChecksumAccumulator, DEFAULT_REGISTRY,
    HashlibAccumulator, REHASH_ALGORITHMS, format_checksum, normalize_name,
    rehash_supported,
)
from filehashes.errors import AlgorithmUnavailable, InvalidResumeState

DATA = os.urandom(300_000)
RESUMABLE = [name for name in DEFAULT_REGISTRY.names() if DEFAULT_REGISTRY.is_resumable(name)]
REHASH_USABLE = rehash_supported("md5") and rehash_supported("sha1")
needs_rehash = pytest.mark.skipif(not REHASH_USABLE, reason="rehash needs OpenSSL 1.x")


def _reference(name: str, data: bytes) -> str:
    if name == "crc32":
        return f"{zlib.crc32(data):08X}"
    if name == "adler32":
        return f"{zlib.adler32(data):08X}"
    return hashlib.new(name, data).hexdigest().upper()


def test_default_registry_contents():
    names = DEFAULT_REGISTRY.names()
    for name in ("crc32", "adler32"):
        assert DEFAULT_REGISTRY.is_resumable(name)
    for name in REHASH_ALGORITHMS:
        assert name in names
        assert DEFAULT_REGISTRY.is_resumable(name) == rehash_supported(name)
    assert DEFAULT_REGISTRY.is_available("blake2b")
    assert not DEFAULT_REGISTRY.is_resumable("blake2b")
    assert not DEFAULT_REGISTRY.is_available("whirlpool-9000")


@pytest.mark.parametrize("name", DEFAULT_REGISTRY.names())
def test_every_available_algorithm_can_be_created(name):
    acc = DEFAULT_REGISTRY.create(name)
    assert acc.name == name
    assert acc.resumable == DEFAULT_REGISTRY.is_resumable(name)


def test_unbuildable_rehash_falls_back_to_hashlib(monkeypatch):
    def refuse():
        raise NotImplementedError("OpenSSL 3 is not yet supported")

    monkeypatch.setattr(algorithms.rehash, "md5", refuse)
    monkeypatch.setattr(algorithms.rehash, "sha1", refuse)
    assert not rehash_supported("md5")
    registry = algorithms.build_default_registry()
    assert registry.is_available("md5")
    assert not registry.is_resumable("md5")
    assert not registry.is_resumable("sha1")
    acc = registry.create("md5")
    acc.write(b"hello world")
    assert format_checksum(acc.final_checksum()) == "5EB63BBBE01EEED093CB22BB8F5ACDC3"
    with pytest.raises(InvalidResumeState):
        acc.export_state()


def test_registry_name_normalization():
    assert normalize_name(" SHA-256 ") == "sha256"
    assert DEFAULT_REGISTRY.is_available("SHA1")
    assert DEFAULT_REGISTRY.get("MD5").name == "md5"


@pytest.mark.parametrize("name", DEFAULT_REGISTRY.names())
def test_checksum_matches_reference(name):
    acc = DEFAULT_REGISTRY.create(name)
    acc.write(DATA[:1000])
    acc.write(DATA[1000:])
    assert format_checksum(acc.final_checksum()) == _reference(name, DATA)


@pytest.mark.parametrize("name", DEFAULT_REGISTRY.names())
def test_final_checksum_does_not_mutate(name):
    acc = DEFAULT_REGISTRY.create(name)
    acc.write(b"hello ")
    acc.final_checksum()
    acc.write(b"world")
    assert format_checksum(acc.final_checksum()) == _reference(name, b"hello world")


@pytest.mark.parametrize("name", RESUMABLE)
@pytest.mark.parametrize("offset", [0, 1, 64, 4097, 299_999])
def test_export_import_resumes_exactly(name, offset):
    first = DEFAULT_REGISTRY.create(name)
    first.write(DATA[:offset])
    blob = first.export_state()

    second = DEFAULT_REGISTRY.create(name)
    second.import_state(blob)
    second.write(DATA[offset:])
    assert format_checksum(second.final_checksum()) == _reference(name, DATA)


def test_crc32_known_values():
    acc = ChecksumAccumulator("crc32")
    assert acc.final_checksum().hex().upper() == "00000000"
    acc.write(b"hello world")
    assert format_checksum(acc.final_checksum()) == "0D4A1185"


def test_adler32_known_values():
    acc = ChecksumAccumulator("adler32")
    assert format_checksum(acc.final_checksum()) == "00000001"
    acc.write(b"hello world")
    assert format_checksum(acc.final_checksum()) == "1A0B045D"


def test_zlib_state_must_be_four_bytes():
    acc = ChecksumAccumulator("crc32")
    with pytest.raises(InvalidResumeState):
        acc.import_state(b"\x00\x01")


def test_hashlib_accumulator_not_resumable():
    acc = HashlibAccumulator("blake2b")
    assert acc.resumable is False
    with pytest.raises(InvalidResumeState):
        acc.export_state()
    with pytest.raises(InvalidResumeState):
        acc.import_state(b"")


@needs_rehash
def test_rehash_state_rejects_foreign_globals():
    acc = DEFAULT_REGISTRY.create("md5")
    with pytest.raises(InvalidResumeState):
        acc.import_state(pickle.dumps(print))
    with pytest.raises(InvalidResumeState):
        acc.import_state(b"not a pickle")


@needs_rehash
def test_rehash_state_rejects_other_algorithm():
    md5 = DEFAULT_REGISTRY.create("md5")
    md5.write(b"abc")
    sha1 = DEFAULT_REGISTRY.create("sha1")
    with pytest.raises(InvalidResumeState):
        sha1.import_state(md5.export_state())


def test_custom_registry():
    registry = AlgorithmRegistry([AlgorithmSpec("crc32", lambda: ChecksumAccumulator("crc32"), True)])
    assert registry.names() == ["crc32"]
    assert registry.create("CRC32").name == "crc32"
    with pytest.raises(AlgorithmUnavailable):
        registry.create("md5")
