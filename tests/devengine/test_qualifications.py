from devengine.qualifications import (
    changed_fields,
    compute_resolver_hash,
    is_stale,
    resolve_qualifications,
)


def test_hash_is_key_order_independent():
    a = {"format": "film", "target_runtime_min_low": 90, "target_runtime_min_high": 110}
    b = {"target_runtime_min_high": 110, "format": "film", "target_runtime_min_low": 90}
    assert compute_resolver_hash(a) == compute_resolver_hash(b)
    assert compute_resolver_hash(a).startswith("qr-1-")


def test_untracked_field_does_not_change_hash():
    base = {"format": "tv-series", "season_episode_count": 8}
    assert compute_resolver_hash(base) == compute_resolver_hash({**base, "title": "Other", "budget": 3})


def test_tracked_field_changes_hash():
    base = {"format": "tv-series", "season_episode_count": 8}
    assert compute_resolver_hash(base) != compute_resolver_hash({**base, "season_episode_count": 10})


def test_staleness_only_depends_on_hashes():
    current = compute_resolver_hash({"format": "film"})
    assert not is_stale(None, current)
    assert not is_stale(current, current)
    assert is_stale("qr-1-0000000000000000", current)


def test_resolver_precedence():
    result = resolve_qualifications(
        {"format": "tv-series", "season_episode_count": 6},
        overrides={"season_episode_count": 12, "episode_target_duration_seconds": 1800},
        guardrails={"episode_target_duration_seconds": 2000},
    )
    assert result.values["season_episode_count"] == 6
    assert result.sources["season_episode_count"] == "project"
    assert result.values["episode_target_duration_seconds"] == 1800
    assert result.sources["episode_target_duration_seconds"] == "overrides"
    assert result.values["episode_target_duration_min_seconds"] == 2400
    assert result.sources["episode_target_duration_min_seconds"] == "defaults"
    assert not result.errors


def test_format_defaults_fill_series_fields():
    result = resolve_qualifications({"format": "vertical_drama"})
    assert result.values["format"] == "vertical-drama"
    assert result.values["episode_target_duration_seconds"] == 60
    assert result.values["season_episode_count"] == 30
    assert {w["field"] for w in result.warnings} == {"episode_target_duration_seconds", "season_episode_count"}


def test_invalid_values_are_reported():
    result = resolve_qualifications({
        "format": "tv-series",
        "episode_target_duration_seconds": 2,
        "episode_target_duration_min_seconds": 900,
        "episode_target_duration_max_seconds": 600,
    })
    fields = [e["field"] for e in result.errors]
    assert "episode_target_duration_seconds" in fields
    assert "episode_target_duration_min_seconds" in fields


def test_changed_fields_names_tracked_differences():
    before = {"format": "film", "target_runtime_min_low": 85, "title": "A"}
    after = {"format": "film", "target_runtime_min_low": 95, "title": "B"}
    assert changed_fields(before, after) == ["target_runtime_min_low"]
    assert changed_fields(None, after) == []
