from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None


class HostCapacity(BaseModel):
    hostname: str
    max_ram: float = Field(ge=0)
    used_ram: float = Field(default=0.0, ge=0)


class PlanRequest(BaseModel):
    hosts: list[HostCapacity]
    slot_ram: float = Field(default=1.75, gt=0)


class Assignment(BaseModel):
    host: str
    threads: int


class PlanResponse(BaseModel):
    total_slots: int
    weaken_threads: int
    grow_threads: int
    grow: list[Assignment]
    weaken: list[Assignment]
    grow_residual: int
    weaken_residual: int


class SettingsModel(BaseModel):
    reserved_home_ram: float
    target: str
    script_ram_cost: float
    fallback_wait_ms: int
    max_poll_ms: int


class SettingsUpdateRequest(BaseModel):
    store_path: str
    changes: dict[str, Any]
    schemas_root: str | None = None


class OptimizeRunRequest(BaseModel):
    env_path: str
    target: str | None = None
    config_kv: list[str] | None = None
    force_run: bool = False
    max_iterations: int | None = Field(default=None, ge=1)
    spider: bool = False
    out_root: str = "data"
    schemas_root: str | None = None
    store_path: str | None = None
    tag: str | None = None
    validate_schemas: bool = True
    dry_run: bool = False


class OptimizeRunResponse(BaseModel):
    run_id: str
    target: str
    manifest_path: str | None = None
    dispatches_path: str | None = None
    summary: dict[str, Any] | None = None
    plan: dict[str, Any] | None = None


class RunRegistryRow(BaseModel):
    run_id: str
    run_type: str
    target: str
    status: str
    primary_outputs: list[str] | None = None
    manifest_path: str | None = None
    iterations: int | None = None
    optimal: bool | None = None
    created_ts: str
    tags: list[str] | None = None


class RunsListResponse(BaseModel):
    runs: list[RunRegistryRow]
