import pytest

from devengine.errors import InvalidStageError
from devengine.ladders import (
    LANE_LADDERS,
    approval_type_for,
    format_to_lane,
    is_approval_required,
    ladder_for,
    next_stage,
    normalize_doc_type,
    previous_stage,
    stage_index,
)


def test_formats_map_to_lanes():
    assert format_to_lane("film") == "feature_film"
    assert format_to_lane("TV Series") == "series"
    assert format_to_lane("vertical_drama") == "vertical_drama"
    assert format_to_lane("short-film") == "short"


def test_unknown_format_gets_default_ladder():
    assert ladder_for("radio-play") == LANE_LADDERS["unspecified"]
    assert ladder_for(None) == LANE_LADDERS["feature_film"]


def test_ladder_is_a_copy():
    ladder = ladder_for("film")
    ladder.append("extra")
    assert "extra" not in ladder_for("film")


def test_aliases_resolve_to_canonical_stages():
    assert normalize_doc_type("Blueprint") == "treatment"
    assert normalize_doc_type("screenplay") == "feature_script"
    assert normalize_doc_type("episode beats", lane="vertical_drama") == "vertical_episode_beats"
    assert normalize_doc_type("episode_beats", lane="series") == "episode_beats"


def test_next_and_previous_stage():
    ladder = ["idea", "concept_brief", "treatment"]
    assert next_stage(ladder, "idea") == "concept_brief"
    assert next_stage(ladder, "treatment") is None
    assert previous_stage(ladder, "idea") is None
    assert previous_stage(ladder, "treatment") == "concept_brief"


def test_off_ladder_stage_is_rejected():
    with pytest.raises(InvalidStageError) as exc:
        stage_index(["idea", "concept_brief"], "deck")
    assert exc.value.code == "INVALID_STAGE"
    with pytest.raises(InvalidStageError):
        next_stage(["idea"], None)


def test_approval_policy():
    stages = ["character_bible", "episode_grid"]
    assert is_approval_required("character_bible", stages)
    assert not is_approval_required("treatment", stages)
    assert approval_type_for("episode_grid") == "series_writer"
    assert approval_type_for("character_bible") == "convert"
