"""Configuration models for the development engine auto-run."""

from __future__ import annotations

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

# Load .env automatically on import (local dev)
load_dotenv()


class ModeConfig(BaseModel):
    """Step/loop budget for one auto-run mode."""

    max_total_steps: int
    max_stage_loops: int
    require_readiness: Optional[int] = None


DEFAULT_MODES: Dict[str, ModeConfig] = {
    "fast": ModeConfig(max_total_steps=8, max_stage_loops=1),
    "balanced": ModeConfig(max_total_steps=12, max_stage_loops=2),
    "premium": ModeConfig(max_total_steps=18, max_stage_loops=3, require_readiness=82),
}

DEFAULT_APPROVAL_STAGES = ["character_bible", "season_arc", "episode_grid", "format_rules"]


class DriftConfig(BaseModel):
    """Thresholds for narrative drift classification."""

    safe_threshold: int = 80
    pivot_threshold: int = 40
    major_quorum: int = 3


class Settings(BaseModel):
    """Global settings for the auto-run orchestrator."""

    database_url: str = "sqlite:///devengine.db"
    modes: Dict[str, ModeConfig] = DEFAULT_MODES
    default_mode: str = "balanced"
    promote_threshold: int = 78
    stabilise_threshold: int = 65
    approval_stages: List[str] = DEFAULT_APPROVAL_STAGES
    high_decisions_block_modes: List[str] = ["premium"]
    step_limit_extension: int = 6
    drift: DriftConfig = DriftConfig()

    def mode_config(self, mode: str) -> ModeConfig:
        """Return the budget for a mode, falling back to the default mode."""
        return self.modes.get(mode) or self.modes[self.default_mode]


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings() -> Settings:
    """Build Settings from environment variables (.env for local dev)."""
    try:
        drift = DriftConfig(
            safe_threshold=_env_int("DRIFT_SAFE_THRESHOLD", 80),
            pivot_threshold=_env_int("DRIFT_PIVOT_THRESHOLD", 40),
            major_quorum=_env_int("DRIFT_MAJOR_QUORUM", 3),
        )
        return Settings(
            database_url=os.getenv("DATABASE_URL", "sqlite:///devengine.db"),
            default_mode=os.getenv("AUTORUN_DEFAULT_MODE", "balanced"),
            promote_threshold=_env_int("AUTORUN_PROMOTE_THRESHOLD", 78),
            stabilise_threshold=_env_int("AUTORUN_STABILISE_THRESHOLD", 65),
            approval_stages=_env_list("AUTORUN_APPROVAL_STAGES", DEFAULT_APPROVAL_STAGES),
            high_decisions_block_modes=_env_list("AUTORUN_HIGH_DECISIONS_BLOCK_MODES", ["premium"]),
            step_limit_extension=_env_int("AUTORUN_STEP_LIMIT_EXTENSION", 6),
            drift=drift,
        )
    except (ValidationError, ValueError) as exc:
        raise RuntimeError(f"Invalid auto-run configuration: {exc}") from exc
