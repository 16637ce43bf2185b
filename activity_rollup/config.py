"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from activity_rollup.domain.enums import Granularity


class Settings(BaseSettings):
    app_name: str = "activity-rollup"
    debug: bool = False
    log_level: str = "INFO"

    # Aggregation
    tracked_granularities: list[Granularity] = [
        Granularity.FIVE_MINUTE,
        Granularity.HOUR,
        Granularity.DAY,
        Granularity.WEEK,
        Granularity.MONTH,
    ]
    max_write_attempts: int = 3
    default_groups: list[str] = ["everyone"]

    # Boundary scheduling (0 disables the in-process ticker)
    boundary_tick_seconds: float = 60.0
    boundary_grace_seconds: float = 0.0

    model_config = {"env_prefix": "ROLLUP_"}


settings = Settings()
