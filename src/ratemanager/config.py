"""
Controller configuration.

RateControllerConfig is frozen (immutable) and validated per mode:
- DEBOUNCE requires delay_s
- RATE_LIMIT requires max_calls and window_s; queue_enabled is optional

A YAML document can declare several named controllers:

    controllers:
      jump:
        mode: DEBOUNCE
        delay_s: 2
      remote:
        mode: RATE_LIMIT
        max_calls: 10
        window_s: 60
        queue_enabled: true
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ratemanager.controller import Mode, RateController

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from ratemanager.scheduling import Scheduler


class ConfigError(ValueError):
    """Raised when a configuration document is malformed."""


class RateControllerConfig(BaseModel):
    """Configuration for a single RateController (frozen)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="default", min_length=1, description="Controller label")
    mode: Mode = Field(default=Mode.DEBOUNCE, description="Admission policy")
    delay_s: Annotated[
        float,
        Field(gt=0, allow_inf_nan=False, description="Cooldown in seconds (DEBOUNCE)"),
    ] | None = None
    max_calls: Annotated[
        int,
        Field(gt=0, strict=True, description="Calls allowed per window (RATE_LIMIT)"),
    ] | None = None
    window_s: Annotated[
        float,
        Field(gt=0, allow_inf_nan=False, description="Sliding window length in seconds (RATE_LIMIT)"),
    ] | None = None
    queue_enabled: bool = Field(
        default=False,
        description="Queue rejected calls for replay (RATE_LIMIT)",
    )

    @model_validator(mode="after")
    def _check_mode_fields(self) -> RateControllerConfig:
        if self.mode is Mode.DEBOUNCE:
            if self.delay_s is None:
                raise ValueError("delay_s is required for DEBOUNCE mode")
            if self.max_calls is not None or self.window_s is not None:
                raise ValueError("max_calls/window_s only apply to RATE_LIMIT mode")
            if self.queue_enabled:
                raise ValueError("queue_enabled only applies to RATE_LIMIT mode")
        else:
            if self.max_calls is None:
                raise ValueError("max_calls is required for RATE_LIMIT mode")
            if self.window_s is None:
                raise ValueError("window_s is required for RATE_LIMIT mode")
            if self.delay_s is not None:
                raise ValueError("delay_s only applies to DEBOUNCE mode")
        return self


def parse_configs(data: Any) -> dict[str, RateControllerConfig]:
    """
    Parse a loaded YAML/JSON document into named configs.

    The mapping key becomes the controller name unless the entry sets one.

    Raises:
        ConfigError: If the document shape is wrong.
        pydantic.ValidationError: If an entry fails validation.
    """
    if not isinstance(data, dict) or "controllers" not in data:
        raise ConfigError("config must be a mapping with a 'controllers' key")

    controllers = data["controllers"]
    if not isinstance(controllers, dict):
        raise ConfigError("'controllers' must be a mapping of name -> settings")

    configs: dict[str, RateControllerConfig] = {}
    for name, entry in controllers.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"controller {name!r} must be a mapping")
        configs[str(name)] = RateControllerConfig(**{"name": str(name), **entry})
    return configs


def load_configs(path: Path | str) -> dict[str, RateControllerConfig]:
    """Load named controller configs from a YAML file."""
    with Path(path).open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return parse_configs(data)


def build_controllers(
    configs: Mapping[str, RateControllerConfig],
    *,
    scheduler: Scheduler | None = None,
    clock: Callable[[], float] | None = None,
) -> dict[str, RateController]:
    """Create one controller per config, sharing a scheduler."""
    return {
        name: RateController.from_config(cfg, scheduler=scheduler, clock=clock)
        for name, cfg in configs.items()
    }
