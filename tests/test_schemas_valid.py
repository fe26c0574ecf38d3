from pathlib import Path

import yaml
from jsonschema.validators import Draft202012Validator as Validator

SCHEMA_DIR = Path(__file__).resolve().parents[1] / "pipeline" / "schemas"


def test_all_schemas_are_valid_jsonschema() -> None:
    schema_files = sorted(SCHEMA_DIR.glob("*.yaml"))
    assert schema_files, "No schema files found under pipeline/schemas"
    for path in schema_files:
        with path.open("r", encoding="utf-8") as f:
            schema = yaml.safe_load(f)
        # Will raise on invalid schema; otherwise passes
        Validator.check_schema(schema)


def test_fixture_environment_matches_schema() -> None:
    from pipeline.io.validate import load_schema, validate_obj

    schema = load_schema(SCHEMA_DIR / "sandbox_environment.schema.yaml")
    env_path = Path(__file__).resolve().parent / "fixtures" / "sandbox_small.yaml"
    validate_obj(schema, yaml.safe_load(env_path.read_text(encoding="utf-8")), schemas_root=SCHEMA_DIR)
