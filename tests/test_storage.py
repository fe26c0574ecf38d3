from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pipeline.io.storage import (
    SCHEMA_VERSION,
    JsonFileStorage,
    MemoryStorage,
    StorageError,
    decode_value,
    encode_value,
)


@pytest.mark.parametrize(
    "value",
    [
        42,
        2.5,
        "n00dles",
        True,
        ["a", 1, None],
        {"home": ["n00dles", "foodnstuff"], "n00dles": ["home"]},
        {1: "one", 2: "two"},
        {"a", "b"},
        datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
    ],
)
def test_values_survive_encoding(value) -> None:
    assert decode_value(encode_value(value)) == value


def test_bool_is_not_stored_as_number() -> None:
    payload = json.loads(encode_value(False))
    assert payload["value"]["type"] == "bool"
    assert decode_value(encode_value(False)) is False


def test_envelope_carries_schema_version() -> None:
    payload = json.loads(encode_value("x"))
    assert payload["schema_version"] == SCHEMA_VERSION


def test_unknown_schema_version_is_rejected() -> None:
    raw = json.dumps({"schema_version": 99, "value": {"type": "string", "data": "x"}})
    with pytest.raises(StorageError, match="schema_version"):
        decode_value(raw)


def test_unknown_record_type_is_rejected() -> None:
    raw = json.dumps({"schema_version": SCHEMA_VERSION, "value": {"type": "blob", "data": "x"}})
    with pytest.raises(StorageError):
        decode_value(raw)


def test_legacy_untyped_value_is_rejected() -> None:
    with pytest.raises(StorageError):
        decode_value("[1, 2, 3]")
    with pytest.raises(StorageError):
        decode_value("not json")


def test_unsupported_python_type() -> None:
    with pytest.raises(StorageError):
        encode_value(object())


def test_memory_storage_roundtrip() -> None:
    s = MemoryStorage()
    s.set_item("k", "v")
    assert s.get_item("k") == "v"
    s.remove_item("k")
    s.remove_item("k")
    assert s.get_item("k") is None
    assert s.keys() == []


def test_json_file_storage_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "store" / "storage.json"
    JsonFileStorage(path).set_item("egoBB_target", encode_value("joesguns"))

    again = JsonFileStorage(path)
    assert again.keys() == ["egoBB_target"]
    assert decode_value(again.get_item("egoBB_target")) == "joesguns"
    again.remove_item("egoBB_target")
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_corrupt_storage_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(StorageError, match="corrupt"):
        JsonFileStorage(path).get_item("x")
