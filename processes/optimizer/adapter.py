from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Sequence
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
from jsonschema import ValidationError

from netscript.sandbox import SandboxEnvironment
from pipeline.io.files import append_parquet, ensure_dir, write_parquet
from pipeline.io.settings import Settings, SettingsStore, load_config, resolve_settings
from pipeline.io.storage import JsonFileStorage
from pipeline.io.validate import load_schema, validate_obj
from processes.spider.adapter import run_spider

from .allocator import CapacityLedger, plan_waves
from .capacity import scan_capacity
from .core import optimize_server
from .types import DispatchRecord, ErrorCodes, OptimizerError

# Resolve repo root (two levels up from this file) and schemas root
REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMAS_ROOT = REPO_ROOT / "pipeline" / "schemas"

logger = logging.getLogger(__name__)

DISPATCH_COLUMNS = [f.name for f in fields(DispatchRecord)]


def _utc_now_iso() -> str:
    # Millisecond precision per schema pattern
    now = datetime.now(timezone.utc)
    ms = int(now.microsecond / 1000)
    return f"{now.strftime('%Y-%m-%dT%H:%M:%S')}.{ms:03d}Z"


def _sha256_of_path(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _sha256_of_obj(obj: Any) -> str:
    payload = json.dumps(obj, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _schema_version(schemas_root: Path, name: str) -> str:
    schema = load_schema(schemas_root / f"{name}.schema.yaml")
    return str(schema.get("version", "0.0.0"))


def open_store(store_path: Path | None) -> SettingsStore | None:
    if store_path is None:
        return None
    return SettingsStore(JsonFileStorage(store_path))


def load_settings(
    *,
    store: SettingsStore | None,
    config_path: Path | None,
    config_kv: Sequence[str] | None,
    schemas_root: Path,
    validate: bool = True,
) -> Settings:
    settings = resolve_settings(store, config_path, config_kv)
    if validate:
        validate_settings(settings, schemas_root)
    return settings


def validate_settings(settings: Settings, schemas_root: Path) -> None:
    schema = load_schema(schemas_root / "settings.schema.yaml")
    try:
        validate_obj(schema, settings.to_dict(), schemas_root=schemas_root)
    except ValidationError as e:
        raise OptimizerError(
            ErrorCodes.CONFIG_ERROR,
            f"invalid settings: {e.message}",
            details={"path": list(e.absolute_path)},
        ) from e


def load_environment(
    env_path: Path, *, schemas_root: Path, validate: bool = True
) -> tuple[SandboxEnvironment, dict[str, Any]]:
    if not env_path.exists():
        raise OptimizerError(
            ErrorCodes.INVALID_ENVIRONMENT,
            f"environment file not found: {env_path}",
            details={"path": str(env_path)},
        )
    cfg = load_config(env_path)
    if validate:
        schema = load_schema(schemas_root / "sandbox_environment.schema.yaml")
        try:
            validate_obj(schema, cfg, schemas_root=schemas_root)
        except ValidationError as e:
            raise OptimizerError(
                ErrorCodes.INVALID_ENVIRONMENT,
                f"invalid environment {env_path}: {e.message}",
                details={"path": list(e.absolute_path)},
            ) from e
    return SandboxEnvironment.from_dict(cfg), cfg


def plan_capacity(env: SandboxEnvironment, settings: Settings) -> dict[str, Any]:
    """What the first iteration would request, without launching anything."""
    ledger = CapacityLedger(scan_capacity(env, settings))
    hosts, free = len(ledger), ledger.total
    split, grow, weaken = plan_waves(ledger)
    return {
        "hosts": hosts,
        "free_slots": free,
        "weaken_threads": split.weaken,
        "grow_threads": split.grow,
        "grow_assignments": [list(a) for a in grow.assignments],
        "weaken_assignments": [list(a) for a in weaken.assignments],
    }


def _dispatches_df(records: Sequence[DispatchRecord]) -> pd.DataFrame:
    if not records:
        return pd.DataFrame(columns=DISPATCH_COLUMNS)
    return pd.DataFrame([r.to_dict() for r in records], columns=DISPATCH_COLUMNS)


def run_adapter(
    *,
    env_path: Path,
    out_root: Path,
    target: str | None = None,
    config_path: Path | None = None,
    config_kv: Sequence[str] | None = None,
    force_run: bool = False,
    max_iterations: int | None = None,
    spider: bool = False,
    tag: str | None = None,
    schemas_root: Path | None = None,
    store_path: Path | None = None,
    validate: bool = True,
    dry_run: bool = False,
    verbose: bool = False,
) -> dict[str, Any]:
    """Run the optimizer against a sandbox environment and record the run.

    Writes ``runs/optimizer/<run_id>/manifest.json`` plus
    ``artifacts/dispatches.parquet`` under ``out_root`` and appends a row to
    ``registry/runs.parquet``. With ``dry_run`` nothing is launched or
    written (the spider is skipped too); the first iteration's capacity
    plan is returned instead.
    """
    created_ts = _utc_now_iso()
    schemas_root = schemas_root or SCHEMAS_ROOT
    store = open_store(store_path)

    settings = load_settings(
        store=store,
        config_path=config_path,
        config_kv=config_kv,
        schemas_root=schemas_root,
        validate=validate,
    )
    target_eff = target or settings.target
    env, env_cfg = load_environment(env_path, schemas_root=schemas_root, validate=validate)

    inputs_list: list[dict[str, Any]] = [
        {
            "path": str(env_path),
            "content_sha256": _sha256_of_path(env_path),
            "role": "environment",
        }
    ]
    if config_path is not None and config_path.exists():
        inputs_list.append(
            {
                "path": str(config_path),
                "content_sha256": _sha256_of_path(config_path),
                "role": "config",
            }
        )
    if config_kv:
        inputs_list.append(
            {
                "path": "inline:config_kv",
                "content_sha256": _sha256_of_obj(load_config(None, config_kv)),
                "role": "config",
            }
        )

    # Portable run_id: YYYYMMDD_HHMMSS_<shorthash>
    ts = datetime.now(timezone.utc)
    short_hash = hashlib.sha256(
        f"{_sha256_of_obj(env_cfg)}|{_sha256_of_obj(settings.to_dict())}|{target_eff}|{force_run}".encode()
    ).hexdigest()[:8]
    run_id = f"{ts.strftime('%Y%m%d_%H%M%S')}_{short_hash}"

    if spider and dry_run:
        logger.info(json.dumps({"event": "spider_skipped", "reason": "dry_run"}))
    elif spider:
        spider_result = run_spider(env, store, settings)
        if verbose:
            logger.info(json.dumps({"event": "spider", **spider_result.to_dict()}))

    if not env.server_exists(target_eff):
        raise OptimizerError(
            ErrorCodes.UNKNOWN_TARGET,
            f"server '{target_eff}' does not exist",
            details={"target": target_eff},
        )

    if dry_run:
        return {
            "run_id": run_id,
            "target": target_eff,
            "settings": settings.to_dict(),
            "plan": plan_capacity(env, settings),
        }

    result = asyncio.run(
        optimize_server(
            env,
            target_eff,
            settings=settings,
            force_run=force_run,
            max_iterations=max_iterations,
        )
    )
    summary = result.to_dict()
    summary.pop("target", None)
    summary.pop("force_run", None)
    summary["optimal"] = bool(result.final_state and result.final_state.is_optimal)

    run_dir = out_root / "runs" / "optimizer" / run_id
    artifacts_dir = run_dir / "artifacts"
    dispatches_path = artifacts_dir / "dispatches.parquet"

    manifest = {
        "schema_version": _schema_version(schemas_root, "optimizer_manifest"),
        "run_id": run_id,
        "run_type": "optimizer",
        "target": target_eff,
        "created_ts": created_ts,
        "force_run": force_run,
        "inputs": inputs_list,
        "settings": settings.to_dict(),
        "summary": summary,
        "outputs": [{"path": str(dispatches_path), "kind": "optimizer_dispatches"}],
        "tags": [tag] if tag else [],
    }
    reg_row = {
        "run_id": run_id,
        "run_type": "optimizer",
        "target": target_eff,
        "status": "success",
        "primary_outputs": [str(dispatches_path)],
        "manifest_path": str(run_dir / "manifest.json"),
        "iterations": result.iterations,
        "optimal": summary["optimal"],
        "created_ts": created_ts,
        "tags": [tag] if tag else [],
    }
    # Validate before any write (fail fast)
    if validate:
        manifest_schema = load_schema(schemas_root / "optimizer_manifest.schema.yaml")
        validate_obj(manifest_schema, manifest, schemas_root=schemas_root)
        runs_registry_schema = load_schema(schemas_root / "runs_registry.schema.yaml")
        validate_obj(runs_registry_schema, reg_row, schemas_root=schemas_root)

    ensure_dir(artifacts_dir)
    write_parquet(_dispatches_df(result.dispatches), dispatches_path)
    (run_dir / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")

    registry_path = out_root / "registry" / "runs.parquet"
    append_parquet([reg_row], registry_path)

    return {
        "run_id": run_id,
        "target": target_eff,
        "manifest_path": str(run_dir / "manifest.json"),
        "dispatches_path": str(dispatches_path),
        "registry_path": str(registry_path),
        "summary": summary,
    }
