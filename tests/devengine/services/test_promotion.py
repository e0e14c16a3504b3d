from devengine.services.promotion import compute_promotion, hard_gates, trajectory_score


def _promote(**overrides):
    args = dict(
        ci=85, gp=80, gap=5, trajectory="converging", doc_type="treatment",
        blockers_count=0, high_impact_count=0, iteration_count=2,
    )
    args.update(overrides)
    return compute_promotion(**args)


def test_strong_scores_promote():
    result = _promote()
    assert result.recommendation == "promote"
    assert result.readiness >= 78


def test_blockers_force_stabilise():
    result = _promote(blockers_count=2)
    assert result.recommendation == "stabilise"
    assert "Blockers active (2)" in result.reasons


def test_eroding_trajectory_is_a_hard_gate():
    result = _promote(trajectory="eroding")
    assert result.recommendation == "escalate"
    assert hard_gates(result.risk_flags) == ["hard_gate:eroding_trajectory"]


def test_early_stage_high_impact_stabilises():
    assert _promote(doc_type="idea", high_impact_count=1).recommendation == "stabilise"
    assert _promote(doc_type="treatment", high_impact_count=1).recommendation == "promote"


def test_analyzer_readiness_wins():
    result = _promote(ci=10, gp=10, readiness_override=91, confidence_override=64)
    assert result.readiness == 91
    assert result.confidence == 64
    assert result.recommendation == "promote"


def test_low_readiness_escalates():
    assert _promote(ci=30, gp=30, gap=40, trajectory="stalled").recommendation == "escalate"


def test_trajectory_scores():
    assert trajectory_score("over-optimised") == 60
    assert trajectory_score(None) == 55
