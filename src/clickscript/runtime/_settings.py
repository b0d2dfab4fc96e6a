"""Engine configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "CLICKSCRIPT_"


class EngineSettings(BaseModel):
    """Tunables for one ``ScriptEngine``.

    Screen bounds validate gesture coordinates; the remaining fields are
    timing budgets and command defaults, all in milliseconds unless noted.
    """

    model_config = ConfigDict(frozen=True)

    screen_width: int = Field(default=1080, gt=0)
    screen_height: int = Field(default=1920, gt=0)
    # Swipe endpoints may leave the screen by this factor
    gesture_bounds_factor: float = Field(default=1.5, ge=1.0)

    sleep_slice_ms: int = Field(default=50, gt=0)
    color_poll_ms: int = Field(default=50, gt=0)
    text_poll_ms: int = Field(default=200, gt=0)
    ocr_timeout_ms: int = Field(default=3000, gt=0)
    find_text_ocr_timeout_ms: int = Field(default=2000, gt=0)

    long_click_ms: int = Field(default=500, ge=0)
    swipe_ms: int = Field(default=300, gt=0)
    tap_delay_ms: int = Field(default=100, ge=0)
    find_text_timeout_ms: int = Field(default=5000, ge=0)
    find_image_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    max_call_depth: int = Field(default=64, gt=0)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = ENV_PREFIX,
        env_file: str | Path | None = None,
    ) -> EngineSettings:
        """Build settings from ``CLICKSCRIPT_<FIELD>`` environment variables.

        Without an explicit *environ*, a ``.env`` file (*env_file*, or the
        nearest one found) is loaded into the process environment first;
        variables that are already set take precedence. Blank values are
        ignored; anything else is validated as usual.
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            raw = environ.get(prefix + name.upper())
            if raw is None or not raw.strip():
                continue
            overrides[name] = raw.strip()
        return cls(**overrides)
