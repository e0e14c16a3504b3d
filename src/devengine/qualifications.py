"""Canonical qualification resolver, resolver hash and staleness checks.

Every generated document version records the resolver hash of the
qualifications it was produced under. Staleness is re-derived on read by
comparing that hash with the hash of the project's current qualifications,
so an edit to any tracked field invalidates every artifact built on it.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from devengine.ladders import normalize_format

RESOLVER_VERSION = 1
MIN_DURATION_SECONDS = 5

# Fields that affect generation; anything else never changes the hash
TRACKED_FIELDS = (
    "format",
    "episode_target_duration_seconds",
    "episode_target_duration_min_seconds",
    "episode_target_duration_max_seconds",
    "season_episode_count",
    "target_runtime_min_low",
    "target_runtime_min_high",
)

FORMAT_DEFAULTS: Dict[str, Dict[str, int]] = {
    "vertical-drama": {"episode_target_duration_seconds": 60, "episode_target_duration_min_seconds": 45, "episode_target_duration_max_seconds": 90, "season_episode_count": 30},
    "limited-series": {"episode_target_duration_seconds": 3300, "episode_target_duration_min_seconds": 2700, "episode_target_duration_max_seconds": 3600, "season_episode_count": 8},
    "tv-series": {"episode_target_duration_seconds": 2700, "episode_target_duration_min_seconds": 2400, "episode_target_duration_max_seconds": 3000, "season_episode_count": 10},
    "anim-series": {"episode_target_duration_seconds": 1320, "episode_target_duration_min_seconds": 1200, "episode_target_duration_max_seconds": 1500, "season_episode_count": 10},
    "documentary-series": {"episode_target_duration_seconds": 2700, "episode_target_duration_min_seconds": 2400, "episode_target_duration_max_seconds": 3300, "season_episode_count": 6},
    "digital-series": {"episode_target_duration_seconds": 600, "episode_target_duration_min_seconds": 420, "episode_target_duration_max_seconds": 900, "season_episode_count": 10},
    "reality": {"episode_target_duration_seconds": 2700, "episode_target_duration_min_seconds": 2400, "episode_target_duration_max_seconds": 3000, "season_episode_count": 10},
    "film": {"target_runtime_min_low": 85, "target_runtime_min_high": 110},
    "anim-feature": {"target_runtime_min_low": 80, "target_runtime_min_high": 100},
    "short-film": {"target_runtime_min_low": 5, "target_runtime_min_high": 20},
}

SERIES_FORMATS = {
    "vertical-drama", "tv-series", "limited-series",
    "anim-series", "documentary-series", "digital-series", "reality",
}


@dataclass
class ResolvedQualifications:
    """Result of resolving a project's qualifications."""

    values: Dict[str, Any]
    sources: Dict[str, Optional[str]] = field(default_factory=dict)
    warnings: List[Dict[str, str]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def resolver_hash(self) -> str:
        return compute_resolver_hash(self.values)


def _pick(*candidates: Any) -> tuple:
    for source, value in candidates:
        if value is not None and value != 0:
            return value, source
    return None, None


def resolve_qualifications(
    fields: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
    guardrails: Optional[Mapping[str, Any]] = None,
) -> ResolvedQualifications:
    """Resolve each tracked field: project value, then override, guardrail, format default."""
    overrides = overrides or {}
    guardrails = guardrails or {}
    fmt = normalize_format(fields.get("format") or overrides.get("format") or "film")
    defaults = FORMAT_DEFAULTS.get(fmt, {})

    values: Dict[str, Any] = {"format": fmt}
    sources: Dict[str, Optional[str]] = {"format": "project"}
    warnings: List[Dict[str, str]] = []
    errors: List[Dict[str, str]] = []

    for name in TRACKED_FIELDS[1:]:
        value, source = _pick(
            ("project", fields.get(name)),
            ("overrides", overrides.get(name)),
            ("guardrails", guardrails.get(name)),
            ("defaults", defaults.get(name)),
        )
        values[name] = round(value) if isinstance(value, (int, float)) else value
        sources[name] = source
        if source == "defaults" and name in ("episode_target_duration_seconds", "season_episode_count"):
            warnings.append({"field": name, "message": "Using global default"})

    duration = values["episode_target_duration_seconds"]
    if duration is not None and duration < MIN_DURATION_SECONDS:
        errors.append({"field": "episode_target_duration_seconds", "message": f"Must be >= {MIN_DURATION_SECONDS}s, got {duration}"})
        values["episode_target_duration_seconds"] = duration = None

    count = values["season_episode_count"]
    if count is not None and count < 1:
        errors.append({"field": "season_episode_count", "message": f"Must be >= 1, got {count}"})
        values["season_episode_count"] = None

    low = values["episode_target_duration_min_seconds"]
    high = values["episode_target_duration_max_seconds"]
    if low is None and high is None and duration is not None:
        low = high = duration
    if low is not None and high is None:
        high = low
    if high is not None and low is None:
        low = high
    if low is not None and high is not None and low > high:
        errors.append({"field": "episode_target_duration_min_seconds", "message": f"Min ({low}) must be <= max ({high})"})
    values["episode_target_duration_min_seconds"] = low
    values["episode_target_duration_max_seconds"] = high

    if fmt in SERIES_FORMATS:
        if values["episode_target_duration_seconds"] is None and low is None:
            errors.append({"field": "episode_target_duration_seconds", "message": "Required for series format"})
        if values["season_episode_count"] is None:
            errors.append({"field": "season_episode_count", "message": "Required for series format"})

    return ResolvedQualifications(values=values, sources=sources, warnings=warnings, errors=errors)


def canonical_qualifications(qualifications: Mapping[str, Any]) -> Dict[str, Any]:
    """Project a qualification mapping onto the tracked fields only."""
    canonical = {name: qualifications.get(name) for name in TRACKED_FIELDS}
    if canonical["format"] is not None:
        canonical["format"] = normalize_format(canonical["format"])
    return canonical


def compute_resolver_hash(qualifications: Mapping[str, Any]) -> str:
    """Deterministic, key-order independent fingerprint of the tracked fields."""
    payload = json.dumps(canonical_qualifications(qualifications), sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"qr-{RESOLVER_VERSION}-{digest[:16]}"


def is_stale(depends_on_resolver_hash: Optional[str], current_hash: str) -> bool:
    """A version is stale iff it recorded a hash and that hash differs.

    Versions without a recorded hash (legacy or unknown dependencies) are
    never flagged.
    """
    if not depends_on_resolver_hash:
        return False
    return depends_on_resolver_hash != current_hash


def changed_fields(
    recorded: Optional[Mapping[str, Any]],
    current: Mapping[str, Any],
) -> List[str]:
    """Tracked fields whose values differ between two qualification snapshots."""
    if not recorded:
        return []
    before = canonical_qualifications(recorded)
    after = canonical_qualifications(current)
    return [name for name in TRACKED_FIELDS if before[name] != after[name]]
