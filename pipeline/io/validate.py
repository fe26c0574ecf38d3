from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from jsonschema.validators import Draft202012Validator as Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012


def load_schema(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        schema = yaml.safe_load(f)
    Validator.check_schema(schema)
    return schema


def schema_registry(schemas_root: Path) -> Registry:
    """Every schema under ``schemas_root``, addressable by ``$id`` and file URI."""
    resources: list[tuple[str, Resource]] = []
    for path in sorted(schemas_root.resolve().glob("*.yaml")):
        with path.open("r", encoding="utf-8") as f:
            contents = yaml.safe_load(f)
        if not isinstance(contents, dict):
            continue
        resource = Resource.from_contents(contents, default_specification=DRAFT202012)
        resources.append((path.as_uri(), resource))
        sid = contents.get("$id")
        if sid:
            resources.append((str(sid), resource))
    return Registry().with_resources(resources)


def validate_obj(
    schema: dict[str, Any],
    obj: Any,
    *,
    schemas_root: Path | None = None,
) -> None:
    registry = schema_registry(schemas_root) if schemas_root is not None else Registry()
    Validator(schema, registry=registry).validate(obj)
