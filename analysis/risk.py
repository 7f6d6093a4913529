from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class RiskSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    WORSENING = "worsening"


SEVERITY_WEIGHT: Dict[RiskSeverity, float] = {
    RiskSeverity.CRITICAL: 100.0,
    RiskSeverity.HIGH: 70.0,
    RiskSeverity.MEDIUM: 40.0,
    RiskSeverity.LOW: 20.0,
}

# Per-pattern contribution to each affected body part, capped at 100
BODY_PART_INCREMENT: Dict[RiskSeverity, float] = {
    RiskSeverity.CRITICAL: 40.0,
    RiskSeverity.HIGH: 25.0,
    RiskSeverity.MEDIUM: 15.0,
    RiskSeverity.LOW: 5.0,
}

SEVERITY_ORDER: Dict[RiskSeverity, int] = {
    RiskSeverity.CRITICAL: 0,
    RiskSeverity.HIGH: 1,
    RiskSeverity.MEDIUM: 2,
    RiskSeverity.LOW: 3,
}

NO_RISK_MESSAGE = "Forma eccellente, continua così!"

BASE_SAFE_VOLUME = 5000.0  # kg
EXPERIENCE_FACTOR = 1.2


@dataclass(frozen=True)
class BiomechanicalSample:
    """Per-frame input of the risk pass. None means "not measured"; rules on None fields are skipped."""

    timestamp_ms: float
    exercise: str
    knee_valgus: Optional[float] = None  # degrees
    spinal_flexion: Optional[float] = None  # degrees away from a straight back
    left_right_imbalance: Optional[float] = None  # percent
    descent_speed: Optional[float] = None
    ascent_speed: Optional[float] = None
    jerkiness: Optional[float] = None  # 0-100
    form_degradation: Optional[float] = None  # percent
    compensatory_movement: Optional[float] = None  # 0-100
    time_under_tension: Optional[float] = None  # seconds
    weight: Optional[float] = None
    reps: Optional[int] = None
    sets: Optional[int] = None
    volume_load: Optional[float] = None  # weight x reps x sets


@dataclass(frozen=True)
class RiskThresholds:
    """Per-exercise risk limits. None disables the matching rule."""

    max_knee_valgus: Optional[float] = None
    max_spinal_flexion: Optional[float] = None
    max_asymmetry: Optional[float] = None
    max_descent_speed: Optional[float] = None
    max_form_degradation: Optional[float] = 30.0


@dataclass(frozen=True)
class RiskRule:
    id: str
    category: str  # form | fatigue | asymmetry | overload | technique
    field: str  # BiomechanicalSample attribute
    limit: str  # RiskThresholds attribute
    body_parts: Tuple[str, ...]
    description: str  # format string, receives the value
    base_severity: RiskSeverity
    bands: Tuple[Tuple[float, RiskSeverity], ...] = ()  # (multiplier, severity), strictest first
    recommendations: Tuple[str, ...] = ()


RISK_RULES: Tuple[RiskRule, ...] = (
    RiskRule(
        id="knee_valgus",
        category="form",
        field="knee_valgus",
        limit="max_knee_valgus",
        body_parts=("ginocchia", "legamenti_crociati"),
        description="Ginocchia cedono verso l'interno ({value:.0f}°)",
        base_severity=RiskSeverity.MEDIUM,
        bands=((2.0, RiskSeverity.CRITICAL), (1.5, RiskSeverity.HIGH)),
        recommendations=(
            "Attiva glutei e spingi le ginocchia verso l'esterno",
            "Riduci il peso e concentrati sull'allineamento",
        ),
    ),
    RiskRule(
        id="spinal_flexion",
        category="technique",
        field="spinal_flexion",
        limit="max_spinal_flexion",
        body_parts=("schiena", "lombare", "dischi_vertebrali"),
        description="Schiena troppo curva ({value:.0f}°)",
        base_severity=RiskSeverity.HIGH,
        bands=((1.5, RiskSeverity.CRITICAL),),
        recommendations=(
            "Mantieni il petto alto e la schiena neutra",
            "Rinforza il core prima di aumentare il carico",
        ),
    ),
    RiskRule(
        id="asymmetry",
        category="asymmetry",
        field="left_right_imbalance",
        limit="max_asymmetry",
        body_parts=("muscoli_stabilizzatori", "core"),
        description="Asimmetria dx/sx rilevata ({value:.0f}%)",
        base_severity=RiskSeverity.MEDIUM,
        bands=((2.0, RiskSeverity.HIGH),),
        recommendations=(
            "Lavora su esercizi unilaterali per bilanciare",
            "Controlla se hai tensioni muscolari da un lato",
        ),
    ),
    RiskRule(
        id="fatigue",
        category="fatigue",
        field="form_degradation",
        limit="max_form_degradation",
        body_parts=("sistema_nervoso", "muscoli_principali"),
        description="Forma degradata del {value:.0f}%",
        base_severity=RiskSeverity.MEDIUM,
        bands=((50.0 / 30.0, RiskSeverity.HIGH),),
        recommendations=(
            "Aumenta il tempo di riposo tra le serie",
            "Considera di ridurre il volume totale",
        ),
    ),
    RiskRule(
        id="speed_excess",
        category="technique",
        field="descent_speed",
        limit="max_descent_speed",
        body_parts=("tendini", "articolazioni"),
        description="Discesa troppo veloce ({value:.1f} m/s)",
        base_severity=RiskSeverity.MEDIUM,
        recommendations=(
            "Rallenta il movimento, specialmente in discesa",
            "Usa un tempo 3-1-2 (discesa-pausa-salita)",
        ),
    ),
)

OVERLOAD_RULE = RiskRule(
    id="overload",
    category="overload",
    field="volume_load",
    limit="max_safe_volume",
    body_parts=("tutti",),
    description="Volume di carico eccessivo ({value:.0f} kg)",
    base_severity=RiskSeverity.HIGH,
    recommendations=(
        "Riduci il peso del 10-15%",
        "Segui una progressione più graduale",
    ),
)

# Extra advice when one body part accumulates more than 70 risk points
BODY_PART_RECOMMENDATIONS: Dict[str, str] = {
    "ginocchia": "Riscalda bene ginocchia con movimenti circolari",
    "schiena": "Aggiungi stretching per flessori dell'anca",
    "spalle": "Mobilizza le spalle prima dell'allenamento",
}


@dataclass(frozen=True)
class RiskPattern:
    id: str
    category: str
    severity: RiskSeverity
    body_parts: Tuple[str, ...]
    description: str
    threshold: float
    current_value: float
    trend: Trend


@dataclass(frozen=True)
class InjuryRisk:
    overall_risk: float
    risk_level: str  # safe | caution | warning | danger
    primary_risks: Tuple[RiskPattern, ...]
    body_part_risks: Dict[str, float]
    recommendations: Tuple[str, ...]
    requires_stop: bool


@dataclass(frozen=True)
class FatigueMetrics:
    muscular: float = 0.0
    neural: float = 0.0
    cardio: float = 0.0
    overall: float = 0.0
    recovery_hours: int = 0


def severity_for(value: float, threshold: float, rule: RiskRule) -> RiskSeverity:
    """First band whose `threshold * multiplier` the value exceeds, else the rule's base severity."""
    for multiplier, severity in rule.bands:
        if value > threshold * multiplier:
            return severity
    return rule.base_severity


def compute_trend(values: Sequence[Optional[float]], lookback: int = 3) -> Trend:
    """
    Compare the newest value with the one `lookback` samples earlier.

    >10% higher is worsening, >10% lower is improving. Too little history or a missing
    value gives stable.
    """
    if lookback <= 0 or len(values) < lookback + 1:
        return Trend.STABLE
    first, last = values[-1 - lookback], values[-1]
    if first is None or last is None:
        return Trend.STABLE
    if last > first * 1.1:
        return Trend.WORSENING
    if last < first * 0.9:
        return Trend.IMPROVING
    return Trend.STABLE


def max_safe_volume(overall_fatigue: float) -> float:
    return BASE_SAFE_VOLUME * EXPERIENCE_FACTOR * (1.0 - overall_fatigue / 100.0)


def estimate_fatigue(sample: BiomechanicalSample) -> FatigueMetrics:
    muscular = min(100.0, (sample.form_degradation or 0.0) * 1.5)
    neural = min(100.0, (sample.compensatory_movement or 0.0) * 2.0)
    cardio = min(100.0, (sample.time_under_tension or 0.0) / 60.0 * 30.0)
    overall = float(np.mean([muscular, neural, cardio]))

    if overall > 80:
        recovery = 48
    elif overall > 60:
        recovery = 24
    elif overall > 40:
        recovery = 12
    else:
        recovery = 6
    return FatigueMetrics(muscular=muscular, neural=neural, cardio=cardio, overall=overall, recovery_hours=recovery)


def risk_level_for(overall_risk: float) -> str:
    if overall_risk >= 80:
        return "danger"
    if overall_risk >= 60:
        return "warning"
    if overall_risk >= 30:
        return "caution"
    return "safe"


def _pattern(rule: RiskRule, value: float, threshold: float, severity: RiskSeverity, trend: Trend) -> RiskPattern:
    return RiskPattern(
        id=rule.id,
        category=rule.category,
        severity=severity,
        body_parts=rule.body_parts,
        description=rule.description.format(value=value),
        threshold=float(threshold),
        current_value=float(value),
        trend=trend,
    )


def assess_patterns(
    history: Sequence[BiomechanicalSample],
    thresholds: RiskThresholds,
    *,
    safe_volume: Optional[float] = None,
    lookback: int = 3,
    rules: Sequence[RiskRule] = RISK_RULES,
) -> List[RiskPattern]:
    """Risk patterns for the newest sample in `history` (which must include it)."""
    if not history:
        return []
    sample = history[-1]
    patterns: List[RiskPattern] = []

    for rule in rules:
        limit = getattr(thresholds, rule.limit)
        value = getattr(sample, rule.field)
        if limit is None or value is None or not np.isfinite(value):
            continue
        if value <= limit:
            continue
        trend = compute_trend([getattr(s, rule.field) for s in history], lookback)
        patterns.append(_pattern(rule, value, limit, severity_for(value, limit, rule), trend))

    if safe_volume is not None and sample.volume_load is not None and sample.volume_load > safe_volume:
        rule = OVERLOAD_RULE
        patterns.append(_pattern(rule, sample.volume_load, safe_volume, rule.base_severity, Trend.STABLE))

    return patterns


def _recommendations(patterns: Sequence[RiskPattern], body_part_risks: Dict[str, float]) -> Tuple[str, ...]:
    by_id = {rule.id: rule for rule in RISK_RULES + (OVERLOAD_RULE,)}
    recs: List[str] = []
    for pattern in patterns:
        rule = by_id.get(pattern.id)
        if rule is not None:
            recs.extend(rule.recommendations)
    for part, risk in body_part_risks.items():
        if risk > 70 and part in BODY_PART_RECOMMENDATIONS:
            recs.append(BODY_PART_RECOMMENDATIONS[part])
    # Drop duplicates, keep first occurrence
    return tuple(dict.fromkeys(recs))


def aggregate_risk(patterns: Sequence[RiskPattern]) -> InjuryRisk:
    """Fold patterns into one InjuryRisk. The overall score is the max severity weight, never a sum."""
    if not patterns:
        return InjuryRisk(
            overall_risk=0.0,
            risk_level="safe",
            primary_risks=(),
            body_part_risks={},
            recommendations=(NO_RISK_MESSAGE,),
            requires_stop=False,
        )

    body_part_risks: Dict[str, float] = {}
    for pattern in patterns:
        for part in pattern.body_parts:
            current = body_part_risks.get(part, 0.0)
            body_part_risks[part] = min(100.0, current + BODY_PART_INCREMENT[pattern.severity])

    overall = min(100.0, max(SEVERITY_WEIGHT[p.severity] for p in patterns))
    ordered = tuple(sorted(patterns, key=lambda p: SEVERITY_ORDER[p.severity]))
    requires_stop = any(p.severity is RiskSeverity.CRITICAL for p in patterns) or overall >= 90

    return InjuryRisk(
        overall_risk=overall,
        risk_level=risk_level_for(overall),
        primary_risks=ordered,
        body_part_risks=body_part_risks,
        recommendations=_recommendations(ordered, body_part_risks),
        requires_stop=requires_stop,
    )


@dataclass
class InjuryRiskMonitor:
    """
    Rolling injury-risk assessment over a bounded sample history.

    update() appends the sample, estimates fatigue, then evaluates every rule against the
    newest sample with trends taken from the history.
    """

    thresholds: RiskThresholds
    history_size: int = 100
    lookback: int = 3
    history: Deque[BiomechanicalSample] = field(init=False)
    fatigue: FatigueMetrics = field(init=False, default_factory=FatigueMetrics)
    last_risk: Optional[InjuryRisk] = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.history = deque(maxlen=int(self.history_size))

    def reset(self) -> None:
        self.history.clear()
        self.fatigue = FatigueMetrics()
        self.last_risk = None

    def update(self, sample: BiomechanicalSample) -> InjuryRisk:
        self.history.append(sample)
        self.fatigue = estimate_fatigue(sample)

        patterns = assess_patterns(
            self.history,
            self.thresholds,
            safe_volume=max_safe_volume(self.fatigue.overall),
            lookback=self.lookback,
        )
        risk = aggregate_risk(patterns)

        previous_level = self.last_risk.risk_level if self.last_risk is not None else "safe"
        if risk.risk_level != previous_level:
            logger.info(
                "risk level %s -> %s (overall=%.0f, patterns=%s)",
                previous_level, risk.risk_level, risk.overall_risk, [p.id for p in risk.primary_risks],
            )
        self.last_risk = risk
        return risk
