from __future__ import annotations

from analysis.config import DEADLIFT, SQUAT
from analysis.risk import (
    NO_RISK_MESSAGE,
    RISK_RULES,
    BiomechanicalSample,
    InjuryRiskMonitor,
    RiskPattern,
    RiskSeverity,
    RiskThresholds,
    Trend,
    aggregate_risk,
    assess_patterns,
    compute_trend,
    estimate_fatigue,
    max_safe_volume,
    risk_level_for,
    severity_for,
)

RULES = {rule.id: rule for rule in RISK_RULES}


def _sample(ts: float = 0.0, **kw) -> BiomechanicalSample:
    return BiomechanicalSample(timestamp_ms=ts, exercise="squat", **kw)


def _pattern(severity: RiskSeverity, body_parts=("ginocchia",), pid: str = "knee_valgus") -> RiskPattern:
    return RiskPattern(
        id=pid,
        category="form",
        severity=severity,
        body_parts=body_parts,
        description="",
        threshold=10.0,
        current_value=20.0,
        trend=Trend.STABLE,
    )


def test_severity_bands():
    valgus = RULES["knee_valgus"]
    assert severity_for(12.0, 10.0, valgus) is RiskSeverity.MEDIUM
    assert severity_for(16.0, 10.0, valgus) is RiskSeverity.HIGH
    assert severity_for(21.0, 10.0, valgus) is RiskSeverity.CRITICAL

    spine = RULES["spinal_flexion"]
    assert severity_for(41.0, 40.0, spine) is RiskSeverity.HIGH
    assert severity_for(61.0, 40.0, spine) is RiskSeverity.CRITICAL

    fatigue = RULES["fatigue"]
    assert severity_for(40.0, 30.0, fatigue) is RiskSeverity.MEDIUM
    assert severity_for(55.0, 30.0, fatigue) is RiskSeverity.HIGH


def test_trend_needs_history():
    assert compute_trend([], 3) is Trend.STABLE
    assert compute_trend([10.0, 20.0, 30.0], 3) is Trend.STABLE
    assert compute_trend([10.0, 0.0, 0.0, 12.0], 3) is Trend.WORSENING
    assert compute_trend([10.0, 0.0, 0.0, 8.0], 3) is Trend.IMPROVING
    assert compute_trend([10.0, 0.0, 0.0, 10.5], 3) is Trend.STABLE
    assert compute_trend([None, 0.0, 0.0, 12.0], 3) is Trend.STABLE


def test_patterns_only_above_limit():
    thresholds = SQUAT.risk
    at_limit = assess_patterns([_sample(knee_valgus=10.0)], thresholds)
    assert at_limit == []
    over = assess_patterns([_sample(knee_valgus=11.0)], thresholds)
    assert [p.id for p in over] == ["knee_valgus"]
    assert over[0].threshold == 10.0 and over[0].current_value == 11.0
    assert over[0].body_parts == ("ginocchia", "legamenti_crociati")


def test_disabled_limit_skips_rule():
    patterns = assess_patterns([_sample(knee_valgus=50.0, spinal_flexion=80.0)], RiskThresholds())
    assert patterns == []


def test_overload_needs_safe_volume():
    sample = _sample(volume_load=7000.0)
    assert assess_patterns([sample], SQUAT.risk) == []
    patterns = assess_patterns([sample], SQUAT.risk, safe_volume=max_safe_volume(0.0))
    assert [p.id for p in patterns] == ["overload"]
    assert patterns[0].severity is RiskSeverity.HIGH
    assert abs(max_safe_volume(0.0) - 6000.0) < 1e-6
    assert abs(max_safe_volume(50.0) - 3000.0) < 1e-6


def test_aggregate_uses_max_not_sum():
    risk = aggregate_risk([_pattern(RiskSeverity.MEDIUM), _pattern(RiskSeverity.MEDIUM, ("core",), "asymmetry")])
    assert risk.overall_risk == 40.0
    assert risk.risk_level == "caution"
    assert not risk.requires_stop

    risk = aggregate_risk([_pattern(RiskSeverity.LOW), _pattern(RiskSeverity.HIGH, ("schiena",), "spinal_flexion")])
    assert risk.overall_risk == 70.0
    assert risk.risk_level == "warning"
    assert [p.severity for p in risk.primary_risks] == [RiskSeverity.HIGH, RiskSeverity.LOW]


def test_aggregate_body_parts_capped_and_stop():
    patterns = [_pattern(RiskSeverity.CRITICAL) for _ in range(3)]
    risk = aggregate_risk(patterns)
    assert risk.body_part_risks["ginocchia"] == 100.0
    assert risk.overall_risk == 100.0
    assert risk.risk_level == "danger"
    assert risk.requires_stop
    # >70 on ginocchia adds the body-part advice, once
    assert risk.recommendations.count("Riscalda bene ginocchia con movimenti circolari") == 1
    assert len(risk.recommendations) == len(set(risk.recommendations))


def test_no_patterns_is_safe():
    risk = aggregate_risk([])
    assert risk.overall_risk == 0.0
    assert risk.risk_level == "safe"
    assert risk.recommendations == (NO_RISK_MESSAGE,)
    assert risk.body_part_risks == {}


def test_risk_level_bands():
    assert risk_level_for(0) == "safe"
    assert risk_level_for(29.9) == "safe"
    assert risk_level_for(30) == "caution"
    assert risk_level_for(60) == "warning"
    assert risk_level_for(80) == "danger"


def test_fatigue_estimate():
    fatigue = estimate_fatigue(_sample(form_degradation=40.0, compensatory_movement=20.0, time_under_tension=60.0))
    assert fatigue.muscular == 60.0
    assert fatigue.neural == 40.0
    assert fatigue.cardio == 30.0
    assert abs(fatigue.overall - 130.0 / 3.0) < 1e-9
    assert fatigue.recovery_hours == 12
    assert estimate_fatigue(_sample()).recovery_hours == 6
    assert estimate_fatigue(_sample(form_degradation=100.0, compensatory_movement=100.0, time_under_tension=600.0)).recovery_hours == 48


def test_monitor_rounded_back_deadlift():
    monitor = InjuryRiskMonitor(DEADLIFT.risk)
    risk = monitor.update(
        BiomechanicalSample(timestamp_ms=0.0, exercise="deadlift", spinal_flexion=40.0, left_right_imbalance=0.0)
    )
    assert [p.id for p in risk.primary_risks] == ["spinal_flexion"]
    pattern = risk.primary_risks[0]
    assert pattern.severity is RiskSeverity.HIGH
    assert pattern.category == "technique"
    assert "schiena" in pattern.body_parts
    assert risk.overall_risk == 70.0
    assert not risk.requires_stop
    assert monitor.last_risk is risk


def test_monitor_trend_and_bounded_history():
    monitor = InjuryRiskMonitor(SQUAT.risk, history_size=5, lookback=3)
    risk = None
    for i, valgus in enumerate([11.0, 11.0, 11.0, 14.0]):
        risk = monitor.update(_sample(i * 100.0, knee_valgus=valgus))
    assert risk.primary_risks[0].trend is Trend.WORSENING
    for i in range(10):
        monitor.update(_sample(1000.0 + i))
    assert len(monitor.history) == 5
    monitor.reset()
    assert len(monitor.history) == 0
    assert monitor.last_risk is None
