"""Typed application settings loaded from TOML."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomllib
from pydantic import BaseModel, Field, field_validator

from placeflow.orchestrator.jobs import JobKind

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
DATABASE_ENV = "PLACEFLOW_DATABASE"


class AppSettings(BaseModel):
    database: Path = Path("data/placeflow.sqlite3")
    quarantine_dir: Path = Path("data/quarantine")
    metrics_dir: Path = Path("data/metrics")
    logging_config: Path = Path("config/logging.yaml")
    country_prefix: str = Field(default="+27", pattern=r"^\+\d{1,3}$")


class SchedulerSettings(BaseModel):
    concurrency: int = Field(default=5, gt=0)
    interval_seconds: float = Field(default=1.0, gt=0)
    interval_cap: int = Field(default=2, gt=0)
    job_timeout_seconds: float = Field(default=300.0, gt=0)
    stale_after_seconds: float = Field(default=600.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, gt=0)


class PipelineSettings(BaseModel):
    batch_concurrency: int = Field(default=5, gt=0)
    duplicate_threshold: float = Field(default=0.8, ge=0, le=1)
    skip_duplicates: bool = True


class FetchSettings(BaseModel):
    user_agent: str = "placeflow/0.1 (+https://example.invalid/bot)"
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_connections: int = Field(default=10, gt=0)


class ScheduleEntry(BaseModel):
    kind: JobKind = JobKind.SCRAPE
    cron: str = "*/30 * * * *"
    priority: int = 5
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("cron")
    @classmethod
    def _five_fields(cls, value: str) -> str:
        if len(value.split()) not in (5, 6):
            raise ValueError(f"Invalid cron expression: {value!r}")
        return value


class ScheduleSettings(BaseModel):
    interval_seconds: float = Field(default=60.0, gt=0)
    jobs: List[ScheduleEntry] = Field(default_factory=list)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Read the TOML configuration file; a missing file yields the defaults.

    ``PLACEFLOW_DATABASE`` in the environment overrides the database path.
    """
    target = path or DEFAULT_SETTINGS_PATH
    raw: Dict[str, Any] = {}
    if target.exists():
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    settings = Settings.model_validate(raw)
    override = os.environ.get(DATABASE_ENV)
    if override:
        settings.app.database = Path(override)
    return settings
