"""Promotion intelligence: readiness, confidence and hard gates from review scores."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

WEIGHTS: Dict[str, Dict[str, float]] = {
    "idea":          {"ci": 0.20, "gp": 0.30, "gap": 0.10, "traj": 0.15, "hi": 0.20, "pen": 0.05},
    "concept_brief": {"ci": 0.25, "gp": 0.25, "gap": 0.10, "traj": 0.15, "hi": 0.20, "pen": 0.05},
    "treatment":     {"ci": 0.30, "gp": 0.20, "gap": 0.10, "traj": 0.20, "hi": 0.15, "pen": 0.05},
    "story_outline": {"ci": 0.30, "gp": 0.20, "gap": 0.10, "traj": 0.20, "hi": 0.15, "pen": 0.05},
    "feature_script": {"ci": 0.35, "gp": 0.20, "gap": 0.10, "traj": 0.20, "hi": 0.10, "pen": 0.05},
}
DEFAULT_WEIGHTS = WEIGHTS["concept_brief"]

HARD_GATE_PREFIX = "hard_gate:"
EARLY_STAGES = {"idea", "concept_brief"}


@dataclass
class PromotionResult:
    recommendation: str  # promote | stabilise | escalate
    readiness: int
    confidence: int
    risk_flags: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _normalize_trajectory(trajectory: Optional[str]) -> str:
    return (trajectory or "").lower().replace("_", "").replace("-", "")


def trajectory_score(trajectory: Optional[str]) -> int:
    t = _normalize_trajectory(trajectory)
    if t == "converging":
        return 90
    if t == "strengthened":
        return 85
    if t in ("overoptimised", "overoptimized"):
        return 60
    if t == "stalled":
        return 55
    if t == "eroding":
        return 25
    return 55


def hard_gates(risk_flags: List[str]) -> List[str]:
    return [flag for flag in risk_flags if flag.startswith(HARD_GATE_PREFIX)]


def compute_promotion(
    ci: float,
    gp: float,
    gap: float,
    trajectory: Optional[str],
    doc_type: str,
    blockers_count: int,
    high_impact_count: int,
    iteration_count: int,
    promote_threshold: int = 78,
    stabilise_threshold: int = 65,
    readiness_override: Optional[float] = None,
    confidence_override: Optional[float] = None,
) -> PromotionResult:
    """Weighted readiness for one review.

    An analyzer that reports its own readiness/confidence wins over the
    weighted score; hard gates are evaluated either way.
    """
    w = WEIGHTS.get(doc_type, DEFAULT_WEIGHTS)
    gap_score = 100 - _clamp(gap * 2, 0, 100)
    traj_score = trajectory_score(trajectory)
    hi_score = 100 - _clamp(high_impact_count * 10, 0, 60)
    iter_penalty = _clamp((iteration_count - 2) * 4, 0, 20)

    readiness = round(
        ci * w["ci"] + gp * w["gp"] + gap_score * w["gap"] + traj_score * w["traj"]
        + hi_score * w["hi"] - iter_penalty * w["pen"]
    )
    if readiness_override is not None:
        readiness = round(readiness_override)
    readiness = int(_clamp(readiness, 0, 100))

    t = _normalize_trajectory(trajectory)
    conf = 70
    if iteration_count <= 1:
        conf -= 10
    if high_impact_count >= 5:
        conf -= 10
    if gap >= 20:
        conf -= 15
    if t in ("converging", "strengthened"):
        conf += 10
    if confidence_override is not None:
        conf = round(confidence_override)
    confidence = int(_clamp(conf, 0, 100))

    risk_flags: List[str] = []
    reasons: List[str] = []

    if blockers_count > 0:
        reasons.append(f"Blockers active ({blockers_count})")
        return PromotionResult("stabilise", readiness, confidence, risk_flags, reasons)
    if t == "eroding":
        risk_flags.append(f"{HARD_GATE_PREFIX}eroding_trajectory")
        reasons.append("Trajectory eroding")
        return PromotionResult("escalate", readiness, confidence, risk_flags, reasons)
    if doc_type in EARLY_STAGES and high_impact_count > 0:
        reasons.append("Early-stage high-impact issues")
        return PromotionResult("stabilise", readiness, confidence, risk_flags, reasons)

    if readiness >= promote_threshold:
        recommendation = "promote"
    elif readiness >= stabilise_threshold:
        recommendation = "stabilise"
    else:
        recommendation = "escalate"

    if t in ("overoptimised", "overoptimized") and gp >= 60 and readiness >= promote_threshold - 6:
        recommendation = "promote"
        reasons.append("Over-optimised nudge")

    reasons.append(f"Readiness: {readiness}/100")
    return PromotionResult(recommendation, readiness, confidence, risk_flags, reasons)
