"""Key-value persistence with explicit, versioned value encoding.

Values are stored as JSON envelopes ``{"schema_version": 1, "value": {"type": ..., "data": ...}}``
where ``type`` selects one member of a closed set of record types.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Literal, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

SCHEMA_VERSION = 1


class StorageError(Exception):
    pass


class StorageBackend(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, raw: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, raw: str) -> None:
        self._items[key] = raw

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._items)


class JsonFileStorage:
    """All items in one JSON object on disk, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            raise StorageError(f"corrupt storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"storage file {self.path} must hold a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(items, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    def set_item(self, key: str, raw: str) -> None:
        items = self._read()
        items[key] = raw
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if items.pop(key, None) is not None:
            self._write(items)

    def keys(self) -> list[str]:
        return sorted(self._read())


class NumberValue(BaseModel):
    type: Literal["number"] = "number"
    data: float | int


class StringValue(BaseModel):
    type: Literal["string"] = "string"
    data: str


class BoolValue(BaseModel):
    type: Literal["bool"] = "bool"
    data: bool


class DateValue(BaseModel):
    type: Literal["date"] = "date"
    data: datetime


class ListValue(BaseModel):
    type: Literal["list"] = "list"
    data: list[Any]


class SetValue(BaseModel):
    type: Literal["set"] = "set"
    data: list[Any]


class MapValue(BaseModel):
    type: Literal["map"] = "map"
    # ordered (key, value) pairs so non-string keys survive the round trip
    data: list[tuple[Any, Any]]


StoredValue = Annotated[
    Union[NumberValue, StringValue, BoolValue, DateValue, ListValue, SetValue, MapValue],
    Field(discriminator="type"),
]


class StoredRecord(BaseModel):
    schema_version: int = SCHEMA_VERSION
    value: StoredValue


_RECORD = TypeAdapter(StoredRecord)


def _to_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_to_plain(v) for v in value)
    return value


def wrap_value(value: Any) -> StoredRecord:
    # bool before number: bool is an int subclass
    if isinstance(value, bool):
        wrapped: Any = BoolValue(data=value)
    elif isinstance(value, (int, float)):
        wrapped = NumberValue(data=value)
    elif isinstance(value, str):
        wrapped = StringValue(data=value)
    elif isinstance(value, datetime):
        wrapped = DateValue(data=value)
    elif isinstance(value, (set, frozenset)):
        wrapped = SetValue(data=_to_plain(value))
    elif isinstance(value, dict):
        wrapped = MapValue(data=[(k, _to_plain(v)) for k, v in value.items()])
    elif isinstance(value, (list, tuple)):
        wrapped = ListValue(data=_to_plain(value))
    else:
        raise StorageError(f"unsupported value type: {type(value).__name__}")
    return StoredRecord(value=wrapped)


def unwrap_value(record: StoredRecord) -> Any:
    value = record.value
    if isinstance(value, SetValue):
        return set(_hashable(v) for v in value.data)
    if isinstance(value, MapValue):
        return {_hashable(k): v for k, v in value.data}
    if isinstance(value, ListValue):
        return list(value.data)
    return value.data


def _hashable(v: Any) -> Any:
    return tuple(v) if isinstance(v, list) else v


def encode_value(value: Any) -> str:
    return wrap_value(value).model_dump_json()


def decode_value(raw: str) -> Any:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError(f"stored value is not JSON: {raw[:40]!r}") from e
    if not isinstance(payload, dict) or "value" not in payload:
        raise StorageError("stored value is not a versioned record")
    version = payload.get("schema_version")
    if version != SCHEMA_VERSION:
        raise StorageError(f"unsupported schema_version {version!r} (expected {SCHEMA_VERSION})")
    try:
        record = _RECORD.validate_python(payload)
    except ValidationError as e:
        raise StorageError(f"invalid stored record: {e}") from e
    return unwrap_value(record)
