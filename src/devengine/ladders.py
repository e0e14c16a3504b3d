"""Canonical document ladders per format lane."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from devengine.errors import InvalidStageError

DOC_TYPE_LABELS: Dict[str, str] = {
    "idea": "Idea / Logline",
    "concept_brief": "Concept Brief",
    "market_sheet": "Market Sheet",
    "vertical_market_sheet": "Vertical Market Sheet",
    "treatment": "Treatment",
    "story_outline": "Story Outline",
    "character_bible": "Character Bible",
    "beat_sheet": "Beat Sheet",
    "episode_beats": "Episode Beats",
    "feature_script": "Feature Script",
    "episode_script": "Episode Script",
    "season_script": "Season Script",
    "season_master_script": "Season Master Script",
    "production_draft": "Production Draft",
    "deck": "Deck",
    "documentary_outline": "Documentary Outline",
    "format_rules": "Format Rules",
    "season_arc": "Season Arc",
    "episode_grid": "Episode Grid",
    "vertical_episode_beats": "Vertical Episode Beats",
    "topline_narrative": "Topline Narrative",
}

LANE_LADDERS: Dict[str, List[str]] = {
    "feature_film": [
        "idea", "concept_brief", "market_sheet", "treatment", "story_outline",
        "character_bible", "beat_sheet", "feature_script", "production_draft", "deck",
    ],
    "series": [
        "idea", "concept_brief", "market_sheet", "treatment", "story_outline",
        "character_bible", "beat_sheet", "episode_beats", "episode_script",
        "season_master_script", "production_draft",
    ],
    "vertical_drama": [
        "idea", "concept_brief", "vertical_market_sheet", "format_rules",
        "character_bible", "season_arc", "episode_grid", "vertical_episode_beats",
        "season_script", "season_master_script",
    ],
    "documentary": [
        "idea", "concept_brief", "market_sheet", "documentary_outline", "deck",
    ],
    "animation": [
        "idea", "concept_brief", "market_sheet", "treatment",
        "character_bible", "beat_sheet", "feature_script",
    ],
    "short": [
        "idea", "concept_brief", "feature_script",
    ],
}
DEFAULT_LANE = "unspecified"
LANE_LADDERS[DEFAULT_LANE] = list(LANE_LADDERS["feature_film"])

DOC_TYPE_ALIASES: Dict[str, str] = {
    "blueprint": "treatment",
    "series_bible": "treatment",
    "outline": "treatment",
    "season_outline": "treatment",
    "architecture": "story_outline",
    "plot_architecture": "story_outline",
    "script": "feature_script",
    "screenplay": "feature_script",
    "draft": "feature_script",
    "screenplay_draft": "feature_script",
    "pilot_script": "episode_script",
    "logline": "idea",
    "one_pager": "concept_brief",
    "concept": "concept_brief",
    "pitch_deck": "deck",
    "lookbook": "deck",
    "episode_beat_sheet": "beat_sheet",
    "complete_season_script": "season_master_script",
    "synopsis": "topline_narrative",
}

LANE_DOC_TYPE_ALIASES: Dict[str, Dict[str, str]] = {
    "vertical_drama": {"episode_beats": "vertical_episode_beats"},
}

FORMAT_LANES: Dict[str, str] = {
    "film": "feature_film",
    "feature": "feature_film",
    "tv-series": "series",
    "limited-series": "series",
    "digital-series": "series",
    "anim-series": "series",
    "reality": "series",
    "vertical-drama": "vertical_drama",
    "documentary": "documentary",
    "documentary-series": "documentary",
    "hybrid-documentary": "documentary",
    "animation": "animation",
    "anim-feature": "animation",
    "short": "short",
    "short-film": "short",
}

# Stages whose generated draft the episode writer depends on
SERIES_WRITER_STAGES = {"episode_grid"}


def normalize_format(fmt: Optional[str]) -> str:
    return re.sub(r"[_ ]+", "-", (fmt or "").strip().lower())


def format_to_lane(fmt: Optional[str]) -> str:
    return FORMAT_LANES.get(normalize_format(fmt), DEFAULT_LANE)


def ladder_for(fmt: Optional[str]) -> List[str]:
    """Ordered stage ids for a project format; unknown formats get the default ladder."""
    return list(LANE_LADDERS[format_to_lane(fmt)])


def normalize_doc_type(name: str, lane: Optional[str] = None) -> str:
    """Map a free-form document label onto its canonical stage id."""
    if not name:
        return name
    key = re.sub(r"[\s-]+", "_", name.strip().lower())
    lane_aliases = LANE_DOC_TYPE_ALIASES.get(lane or DEFAULT_LANE, {})
    if key in lane_aliases:
        return lane_aliases[key]
    return DOC_TYPE_ALIASES.get(key, key)


def doc_type_label(stage: str) -> str:
    return DOC_TYPE_LABELS.get(stage, stage.replace("_", " "))


def stage_index(ladder: List[str], stage: Optional[str]) -> int:
    if stage is None or stage not in ladder:
        raise InvalidStageError(stage, ladder)
    return ladder.index(stage)


def next_stage(ladder: List[str], stage: str) -> Optional[str]:
    """Stage after `stage`, or None at the top of the ladder."""
    idx = stage_index(ladder, stage)
    return ladder[idx + 1] if idx + 1 < len(ladder) else None


def previous_stage(ladder: List[str], stage: str) -> Optional[str]:
    idx = stage_index(ladder, stage)
    return ladder[idx - 1] if idx > 0 else None


def is_approval_required(stage: str, approval_stages: Iterable[str]) -> bool:
    return stage in set(approval_stages)


def approval_type_for(stage: str) -> str:
    if stage in SERIES_WRITER_STAGES:
        return "series_writer"
    return "convert"
