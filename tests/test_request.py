"""Tests for work requests, resume states and their wire form."""
import base64
import json

import pytest

from filehashes.errors import RequestDecodeError
from filehashes.request import ResumeState, WorkRequest


def test_algorithms_normalized_and_deduplicated():
    req = WorkRequest("a.bin", ("MD5", "sha1", "md5", "SHA-256"))
    assert req.algorithms == ("md5", "sha1", "sha256")


def test_request_is_immutable():
    req = WorkRequest.new("a.bin", ["md5"])
    with pytest.raises(AttributeError):
        req.file_path = "b.bin"


def test_state_matches():
    state = ResumeState(10, 5, {"md5": b"x", "sha1": b"y"})
    assert WorkRequest("a", ("md5", "sha1"), state).state_matches()
    assert WorkRequest("a", ("sha1", "md5"), state).state_matches()
    assert not WorkRequest("a", ("md5",), state).state_matches()
    assert not WorkRequest("a", ("md5", "sha1", "crc32"), state).state_matches()
    assert WorkRequest("a", ("md5",)).state_matches()


def test_resume_state_bounds():
    with pytest.raises(ValueError):
        ResumeState(summed_size=-1)
    with pytest.raises(ValueError):
        ResumeState(progress=101)


def test_key_is_stable():
    a = WorkRequest("a.bin", ("md5", "sha1"))
    b = WorkRequest("a.bin", ("MD5", "sha1"))
    c = WorkRequest("a.bin", ("sha1",))
    assert a.key == b.key
    assert a.key != c.key
    assert len(a.key) == 32


def test_wire_form_without_state():
    req = WorkRequest("dir/file.iso", ("md5", "sha1"))
    data = json.loads(req.to_json())
    assert data == {"file": "dir/file.iso", "hash_algs": ["md5", "sha1"], "stat": None}


def test_wire_form_with_state():
    state = ResumeState(4 * 1024 * 1024, 40, {"md5": b"\x00\x01\xff"})
    data = WorkRequest("f", ("md5",), state).to_dict()
    assert data["stat"]["summed_size"] == "4194304"
    assert data["stat"]["progress"] == 40
    assert base64.b64decode(data["stat"]["datas"]["md5"]) == b"\x00\x01\xff"


def test_decode_front_end_request():
    raw = json.dumps({
        "file": "../../filehashes.go",
        "hash_algs": ["md5", "sha1"],
        "stat": {"summed_size": "1024", "progress": 12,
                 "datas": {"md5": base64.b64encode(b"abc").decode(), "sha1": base64.b64encode(b"def").decode()}},
    })
    req = WorkRequest.from_json(raw)
    assert req.file_path == "../../filehashes.go"
    assert req.algorithms == ("md5", "sha1")
    assert req.resume_state.summed_size == 1024
    assert req.resume_state.progress == 12
    assert req.resume_state.per_algorithm_state["sha1"] == b"def"
    assert WorkRequest.from_dict(req.to_dict()) == req


@pytest.mark.parametrize("raw", [
    "not json",
    json.dumps([]),
    json.dumps({"hash_algs": ["md5"]}),
    json.dumps({"file": "a", "hash_algs": "md5"}),
    json.dumps({"file": "a", "hash_algs": ["md5"], "stat": {"summed_size": "x"}}),
    json.dumps({"file": "a", "hash_algs": ["md5"], "stat": {"progress": 500}}),
    json.dumps({"file": "a", "hash_algs": ["md5"], "stat": {"datas": {"md5": "!!notbase64"}}}),
])
def test_decode_rejects_malformed(raw):
    with pytest.raises(RequestDecodeError):
        WorkRequest.from_json(raw)


def test_decode_error_is_value_error():
    with pytest.raises(ValueError):
        WorkRequest.from_json("{}")
