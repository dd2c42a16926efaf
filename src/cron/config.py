"""
Cron service configuration.

Field names (via aliases) match the "cron" config block used by the agent
runtime: enabled, store, maxConcurrentRuns, webhook, webhookToken.

Environment Variables (CronConfig.from_env):
- CRON_ENABLED: Master on/off switch (default: true)
- CRON_STORE: Store file path (default: data/cron/jobs.json)
- CRON_MAX_CONCURRENT_RUNS: Gate capacity (default: 1)
- CRON_WEBHOOK: Deprecated legacy fallback webhook URL
- CRON_WEBHOOK_TOKEN: Bearer token for webhook POST delivery
- CRON_TICK_INTERVAL_SECONDS: Dispatcher tick period (default: 1.0)
- CRON_RUN_TIMEOUT_SECONDS: Per-run timeout, "none" to disable (default: 600)
"""

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from src.infra.data_paths import (
    _get_env_bool,
    _get_env_float,
    _get_env_int,
    _get_env_str,
    resolve_store_path,
)

from .errors import ValidationError
from .gate import DEFAULT_MAX_CONCURRENT_RUNS


logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_SECONDS = 1.0
DEFAULT_RUN_TIMEOUT_SECONDS = 600.0


class CronConfig(BaseModel):
    """Cron service settings."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    enabled: bool = True
    store: Optional[str] = Field(default=None, description="Path to the job store file")
    max_concurrent_runs: int = Field(
        default=DEFAULT_MAX_CONCURRENT_RUNS,
        ge=1,
        alias="maxConcurrentRuns",
    )
    webhook: Optional[str] = Field(
        default=None,
        description="Deprecated legacy fallback webhook URL for notify=true jobs without delivery",
    )
    webhook_token: Optional[str] = Field(
        default=None,
        alias="webhookToken",
        description="Bearer token for webhook POST delivery",
    )
    tick_interval_seconds: float = Field(
        default=DEFAULT_TICK_INTERVAL_SECONDS,
        gt=0,
        alias="tickIntervalSeconds",
    )
    run_timeout_seconds: Optional[float] = Field(
        default=DEFAULT_RUN_TIMEOUT_SECONDS,
        gt=0,
        alias="runTimeoutSeconds",
    )

    @classmethod
    def load(cls, data: Optional[dict] = None) -> "CronConfig":
        """
        Build config from a dict (camelCase or snake_case keys).

        Raises:
            ValidationError: If any value is invalid
        """
        try:
            config = cls.model_validate(data or {})
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors(include_url=False)
            ]
            raise ValidationError(f"Invalid cron config: {e}", errors=errors) from e

        if config.webhook:
            logger.warning(
                "cron.webhook is deprecated; set delivery.mode='webhook' with delivery.to on each job"
            )
        return config

    @classmethod
    def from_env(cls) -> "CronConfig":
        """Build config from CRON_* environment variables (after loading .env)."""
        load_dotenv()
        return cls.load({
            "enabled": _get_env_bool("CRON_ENABLED", True),
            "store": _get_env_str("CRON_STORE"),
            "maxConcurrentRuns": _get_env_int("CRON_MAX_CONCURRENT_RUNS", DEFAULT_MAX_CONCURRENT_RUNS),
            "webhook": _get_env_str("CRON_WEBHOOK"),
            "webhookToken": _get_env_str("CRON_WEBHOOK_TOKEN"),
            "tickIntervalSeconds": _get_env_float("CRON_TICK_INTERVAL_SECONDS", DEFAULT_TICK_INTERVAL_SECONDS),
            "runTimeoutSeconds": _get_env_float("CRON_RUN_TIMEOUT_SECONDS", DEFAULT_RUN_TIMEOUT_SECONDS),
        })

    @property
    def store_path(self) -> Path:
        """Resolved store file path."""
        return resolve_store_path(self.store)
