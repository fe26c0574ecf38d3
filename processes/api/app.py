from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

import pandas as pd
from fastapi import FastAPI, Response
from jsonschema import ValidationError

from pipeline.io.settings import Settings, SettingsStore
from pipeline.io.storage import JsonFileStorage, StorageError
from processes.api.models import (
    Assignment,
    ErrorResponse,
    OptimizeRunRequest,
    OptimizeRunResponse,
    PlanRequest,
    PlanResponse,
    RunRegistryRow,
    RunsListResponse,
    SettingsModel,
    SettingsUpdateRequest,
)
from processes.optimizer import adapter as opt
from processes.optimizer.allocator import CapacityLedger, plan_waves
from processes.optimizer.types import ErrorCodes, Host, OptimizerError

app = FastAPI()

logger = logging.getLogger("processes.api")

_ERROR_STATUS: dict[ErrorCodes, tuple[int, str]] = {
    ErrorCodes.UNKNOWN_TARGET: (404, "unknown_target"),
    ErrorCodes.CONFIG_ERROR: (422, "invalid_config"),
    ErrorCodes.INVALID_ENVIRONMENT: (422, "invalid_environment"),
}


def _enter(endpoint: str, **extra: Any) -> float:
    logger.info(json.dumps({"event": "api_enter", "endpoint": endpoint, **extra}))
    return time.time()


def _exit(endpoint: str, t0: float, **extra: Any) -> None:
    dt = time.time() - t0
    logger.info(
        json.dumps({"event": "api_exit", "endpoint": endpoint, "dt_s": round(dt, 6), **extra})
    )


def _error(response: Response, e: OptimizerError) -> ErrorResponse:
    status, error = _ERROR_STATUS.get(e.code, (500, "internal_error"))
    response.status_code = status
    return ErrorResponse(error=error, detail=e.user_message)


@app.get("/health")  # type: ignore[misc]
def health() -> dict[str, Any]:
    t0 = _enter("/health")
    out = {
        "ok": True,
        "version": "0.1.0",
        "time": datetime.now(UTC).isoformat(),
    }
    _exit("/health", t0)
    return out


@app.post("/plan", response_model=PlanResponse)  # type: ignore[misc]
def plan(req: PlanRequest) -> PlanResponse:
    """Split and allocate the free capacity of the given hosts, launching nothing."""
    t0 = _enter("/plan", hosts=len(req.hosts))
    ledger = CapacityLedger(
        Host(hostname=h.hostname, max_ram=h.max_ram, used_ram=h.used_ram, slot_ram=req.slot_ram)
        for h in req.hosts
    )
    total = ledger.total
    split, grow, weaken = plan_waves(ledger)
    out = PlanResponse(
        total_slots=total,
        weaken_threads=split.weaken,
        grow_threads=split.grow,
        grow=[Assignment(host=h, threads=t) for h, t in grow.assignments],
        weaken=[Assignment(host=h, threads=t) for h, t in weaken.assignments],
        grow_residual=grow.residual,
        weaken_residual=weaken.residual,
    )
    _exit("/plan", t0, total_slots=out.total_slots)
    return out


@app.get(
    "/settings",
    response_model=SettingsModel | ErrorResponse,
)  # type: ignore[misc]
def get_settings(
    response: Response, store_path: str | None = None
) -> SettingsModel | ErrorResponse:
    """Stored settings, or the defaults when no store is given."""
    t0 = _enter("/settings", store_path=store_path)
    store = opt.open_store(Path(store_path) if store_path else None)
    try:
        settings = store.load() if store is not None else Settings()
    except StorageError as e:
        response.status_code = 422
        return ErrorResponse(error="invalid_store", detail=str(e))
    out = SettingsModel(**settings.to_dict())
    _exit("/settings", t0)
    return out


@app.put(
    "/settings",
    response_model=SettingsModel | ErrorResponse,
)  # type: ignore[misc]
def put_settings(req: SettingsUpdateRequest, response: Response) -> SettingsModel | ErrorResponse:
    t0 = _enter("/settings", store_path=req.store_path, keys=sorted(req.changes))
    unknown = sorted(set(req.changes) - set(Settings().to_dict()))
    if unknown:
        response.status_code = 422
        return ErrorResponse(error="invalid_config", detail=f"unknown settings: {', '.join(unknown)}")
    store = SettingsStore(JsonFileStorage(Path(req.store_path)))
    try:
        merged = Settings.from_dict({**store.load().to_dict(), **req.changes})
        opt.validate_settings(merged, Path(req.schemas_root) if req.schemas_root else opt.SCHEMAS_ROOT)
    except OptimizerError as e:
        return _error(response, e)
    except StorageError as e:
        response.status_code = 422
        return ErrorResponse(error="invalid_store", detail=str(e))
    except (TypeError, ValueError) as e:
        response.status_code = 422
        return ErrorResponse(error="invalid_config", detail=str(e))
    store.save(merged)
    out = SettingsModel(**merged.to_dict())
    _exit("/settings", t0)
    return out


@app.post(
    "/run/optimize",
    response_model=OptimizeRunResponse | ErrorResponse,
)  # type: ignore[misc]
def run_optimize(req: OptimizeRunRequest, response: Response) -> OptimizeRunResponse | ErrorResponse:
    t0 = _enter("/run/optimize", env_path=req.env_path, target=req.target)
    env_path = Path(req.env_path)
    if not env_path.exists():
        response.status_code = 404
        return ErrorResponse(error="not_found", detail="environment file not found")
    try:
        res = opt.run_adapter(
            env_path=env_path,
            out_root=Path(req.out_root),
            target=req.target,
            config_kv=req.config_kv,
            force_run=req.force_run,
            max_iterations=req.max_iterations,
            spider=req.spider,
            tag=req.tag,
            schemas_root=Path(req.schemas_root) if req.schemas_root else None,
            store_path=Path(req.store_path) if req.store_path else None,
            validate=req.validate_schemas,
            dry_run=req.dry_run,
        )
    except OptimizerError as e:
        logger.error(
            json.dumps({"event": "api_error", "endpoint": "/run/optimize", "code": e.code.value})
        )
        return _error(response, e)
    except StorageError as e:
        logger.error(
            json.dumps({"event": "api_error", "endpoint": "/run/optimize", "code": "STORAGE_ERROR"})
        )
        response.status_code = 422
        return ErrorResponse(error="invalid_store", detail=str(e))
    except ValidationError as e:
        logger.error(
            json.dumps({"event": "api_error", "endpoint": "/run/optimize", "code": "INVALID_MANIFEST"})
        )
        response.status_code = 500
        return ErrorResponse(error="invalid_manifest", detail=e.message)
    out = OptimizeRunResponse(
        run_id=str(res["run_id"]),
        target=str(res["target"]),
        manifest_path=res.get("manifest_path"),
        dispatches_path=res.get("dispatches_path"),
        summary=res.get("summary"),
        plan=res.get("plan"),
    )
    _exit("/run/optimize", t0, run_id=out.run_id)
    return out


def _plain_row(row: dict[str, Any]) -> dict[str, Any]:
    # parquet round-trips list columns as arrays
    out: dict[str, Any] = {}
    for k, v in row.items():
        if hasattr(v, "tolist"):
            v = v.tolist()
        if isinstance(v, float) and pd.isna(v):
            v = None
        out[k] = v
    return out


@app.get(
    "/runs",
    response_model=RunsListResponse | ErrorResponse,
)  # type: ignore[misc]
def list_runs(
    response: Response, registry_path: str | None = None
) -> RunsListResponse | ErrorResponse:
    """List runs discovered in the registry parquet.

    Returns 404 if the registry is missing.
    """
    t0 = _enter("/runs", registry_path=registry_path)
    reg_path = Path(registry_path or Path("data") / "registry" / "runs.parquet")
    if not reg_path.exists():
        response.status_code = 404
        return ErrorResponse(error="not_found", detail="registry not found")
    try:
        df = pd.read_parquet(reg_path)
    except Exception as e:  # pragma: no cover
        response.status_code = 500
        return ErrorResponse(error="internal_error", detail=f"failed to read registry: {e}")
    rows = cast(list[dict[str, Any]], df.to_dict(orient="records"))
    models = [RunRegistryRow.model_validate(_plain_row(r)) for r in rows]
    out = RunsListResponse(runs=models)
    _exit("/runs", t0, count=len(models))
    return out
