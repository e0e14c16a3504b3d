import pytest

from devengine.collaborators.base import DocumentVersion
from devengine.config import DriftConfig
from devengine.errors import InputValidationError
from devengine.services.drift import (
    DriftDetector,
    DriftService,
    classify,
    extract_core_fields,
    token_similarity,
)

CORE = {
    "protagonist": "Mara, a night-shift nurse hiding a gambling debt",
    "stakes": "She loses her license and her daughter",
    "tone": "grounded tense medical thriller",
    "world_rules": "No supernatural elements, hospital politics are real",
    "comparables": "The Pitt, Nightcrawler",
}


def _version(version_id, core=None, text="", doc_type="concept_brief", source=None):
    return DocumentVersion(
        document_id=f"doc-{doc_type}",
        version_id=version_id,
        doc_type=doc_type,
        text=text,
        core_fields=dict(core or {}),
        source_version_id=source,
    )


def test_similarity_is_symmetric_and_bounded():
    a, b = "grounded tense thriller", "tense comic thriller"
    assert token_similarity(a, b) == token_similarity(b, a)
    assert token_similarity(a, a) == 100
    assert token_similarity(a, "") == 0


def test_core_fields_parsed_from_labelled_text():
    text = "Protagonist: Mara\n## Tone: bleak\nWorld: no magic\nLogline: ignored"
    fields = extract_core_fields(_version("v1", text=text))
    assert fields == {"protagonist": "Mara", "tone": "bleak", "world_rules": "no magic"}


def test_classification_thresholds():
    config = DriftConfig()
    assert classify({"tone": 90, "stakes": 85}, config) == "none"
    assert classify({"tone": 60, "stakes": 85}, config) == "minor"
    assert classify({"tone": 30}, config) == "major"
    assert classify({"tone": 60, "stakes": 70, "protagonist": 75}, config) == "major"


def test_pluggable_similarity():
    detector = DriftDetector(similarity=lambda a, b: 50)
    level, items = detector.compare({"tone": "x", "stakes": "y"}, {"tone": "x", "stakes": "y"})
    assert level == "minor"
    assert [i["similarity"] for i in items] == [50, 50]


def test_record_is_once_per_version(session_factory):
    service = DriftService()
    ancestor = _version("v1", CORE, doc_type="idea")
    drifted = _version("v2", {**CORE, "protagonist": "A retired astronaut on Mars"}, source="v1")
    with session_factory() as session:
        first = service.record(session, "p", drifted, ancestor)
        again = service.record(session, "p", drifted, _version("v9", {}, doc_type="idea"))
        assert first.id == again.id
        assert first.drift_level == "major"
        assert service.blocks_promotion(first)


def test_reseed_schedules_one_regeneration(session_factory):
    service = DriftService()
    ancestor = _version("v1", CORE, doc_type="idea")
    drifted = _version("v2", {**CORE, "stakes": "Nothing much"}, source="v1")
    with session_factory() as session:
        event = service.record(session, "p", drifted, ancestor)
        service.resolve(session, event, "reseed")
        assert event.resolved
        assert event.regeneration_scheduled
        assert not service.blocks_promotion(event)
        with pytest.raises(InputValidationError) as exc:
            service.resolve(session, event, "accept_drift")
        assert exc.value.code == "ALREADY_RESOLVED"
        service.complete_regeneration(event, {"version_id": "v3"})
        assert not event.regeneration_scheduled


def test_accept_drift_updates_baseline(session_factory):
    service = DriftService()
    ancestor = _version("v1", CORE, doc_type="idea")
    new_core = {**CORE, "tone": "absurdist workplace comedy", "stakes": "A parking spot"}
    with session_factory() as session:
        event = service.record(session, "p", _version("v2", new_core, source="v1"), ancestor)
        assert event.drift_level != "none"
        service.resolve(session, event, "accept_drift")
        session.flush()

        # A later document matching the accepted values no longer drifts from the old ancestor
        repeat = service.record(session, "p", _version("v3", new_core, doc_type="treatment", source="v2"), ancestor)
        assert repeat.drift_level == "none"


def test_intentional_pivot_keeps_baseline(session_factory):
    service = DriftService()
    ancestor = _version("v1", CORE, doc_type="idea")
    with session_factory() as session:
        event = service.record(session, "p", _version("v2", {**CORE, "tone": "farce"}, source="v1"), ancestor)
        service.resolve(session, event, "intentional_pivot")
        assert event.downstream_review_required
        assert service.get_baseline(session, "p") is None


def test_unknown_resolution_rejected(session_factory):
    service = DriftService()
    with session_factory() as session:
        event = service.record(session, "p", _version("v2", CORE, source="v1"), _version("v1", CORE, doc_type="idea"))
        assert event.drift_level == "none"
        with pytest.raises(InputValidationError):
            service.resolve(session, event, "ignore")
        assert not event.resolved


def test_list_events_and_drifted_fields(session_factory):
    service = DriftService()
    ancestor = _version("v1", CORE, doc_type="idea")
    with session_factory() as session:
        minor = service.record(session, "p", _version("v2", {**CORE, "tone": "grounded tense medical drama"}, source="v1"), ancestor)
        major = service.record(session, "p", _version("v3", {**CORE, "protagonist": "A retired astronaut on Mars"}, source="v1"), ancestor)
        service.record(session, "other", _version("v4", CORE, source="v1"), ancestor)
        service.resolve(session, major, "accept_drift")
        session.flush()

        assert minor.drift_level == "minor"
        assert service.drifted_fields(minor) == ["tone"]
        assert [e.id for e in service.list_events(session, "p")] == [major.id, minor.id]
        assert [e.id for e in service.list_events(session, "p", unresolved_only=True)] == [minor.id]
