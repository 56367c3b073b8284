"""Runtime knobs read from the environment."""

from __future__ import annotations

import os
from datetime import datetime, timezone

CURRENT_YEAR_ENV = "SURVEY_DOCTOR_CURRENT_YEAR"
OUTPUT_STAMP_ENV = "SURVEY_DOCTOR_OUTPUT_STAMP"


def current_year(override: int | None = None) -> int:
    if override is not None:
        return int(override)
    pinned = os.environ.get(CURRENT_YEAR_ENV)
    if pinned:
        try:
            return int(pinned)
        except ValueError as exc:
            raise ValueError(f"{CURRENT_YEAR_ENV} must be a year, got {pinned!r}") from exc
    return datetime.now(timezone.utc).year


def output_stamp() -> str:
    override = os.environ.get(OUTPUT_STAMP_ENV)
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
