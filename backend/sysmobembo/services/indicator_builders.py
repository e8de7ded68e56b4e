"""
Displacement indicator builders
───────────────────────────────
One builder per indicator family, shared by every overview route:
  1. Volume & localisation  (totals, province breakdown, monthly series)
  2. Causes                 (motive families, per-type detail)
  3. Vulnerability & needs  (demographic profile, services, shelters)
  4. Dynamics & alerts      (risk zones, return trends, early alerts)

Builders are independent and read-only; each one only needs a session, the
analysis window, the area filter and the indicator configuration.

Cause categorisation is type-based: each motive type belongs to exactly one
family, so family percentages are disjoint and sum to 100. The boolean factor
flags on the motive row (conflit_arme, persecution, ...) are not used, since a
motive with several flags set would be counted in several families.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, List, Sequence

import numpy as np
from sqlalchemy.orm import Session

from sysmobembo.schemas.overview import (
    AccesServicesStats,
    AlertePrecoceStats,
    CauseDetailStats,
    CausesDeplacementsIndicateurs,
    DynamiquesAlerteIndicateurs,
    EvolutionTemporelleStats,
    ProfilDemographiqueStats,
    RepartitionProvinceStats,
    ReturnTrend,
    RiskLevel,
    TendanceRetourStats,
    VolumeLocalisationIndicateurs,
    VulnerabiliteBesoinsIndicateurs,
    ZoneRisqueStats,
)
from sysmobembo.services import indicator_queries as q
from sysmobembo.services.indicator_config import IndicatorConfig
from sysmobembo.services.periods import AreaFilter, PeriodWindow

logger = logging.getLogger("sysmobembo.services.indicator_builders")

THREAT_TYPE = "MULTIPLE"


# ═══════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════

def percentages(counts: Sequence[int]) -> List[float]:
    """Share of each count in the total, in percent; all zeros when the total is zero."""
    if not counts:
        return []
    arr = np.asarray(counts, dtype=float)
    total = float(arr.sum())
    if total <= 0:
        return [0.0] * len(counts)
    return [float(v) for v in arr * 100.0 / total]


def _ratio_pct(part: int, total: int) -> float:
    return part * 100.0 / total if total > 0 else 0.0


class CauseFamily(str, enum.Enum):
    ARMED_CONFLICTS = "conflits_armes"
    DISASTERS = "catastrophes"
    PERSECUTION = "persecution"
    GENERALISED_VIOLENCE = "violence_generalisee"
    OTHER = "autres_causes"


# French tags as recorded by field agents, English tags as used by imports
CAUSE_FAMILIES: Dict[CauseFamily, frozenset] = {
    CauseFamily.ARMED_CONFLICTS: frozenset({
        "armed_conflict", "war", "political_violence",
        "conflit_arme", "guerre", "violence_politique",
    }),
    CauseFamily.DISASTERS: frozenset({
        "natural_disaster", "flood", "drought", "earthquake",
        "catastrophe_naturelle", "inondation", "secheresse", "tremblement_terre",
    }),
    CauseFamily.PERSECUTION: frozenset({
        "religious_persecution", "ethnic_persecution", "political_persecution",
        "persecution_religieuse", "persecution_ethnique", "persecution_politique",
    }),
    CauseFamily.GENERALISED_VIOLENCE: frozenset({
        "generalised_violence", "insecurity", "criminality",
        "violence_generalisee", "insecurite", "criminalite",
    }),
}

_FAMILY_BY_TYPE = {tag: family for family, tags in CAUSE_FAMILIES.items() for tag in tags}


def categorise_motive(motive_type: str) -> CauseFamily:
    return _FAMILY_BY_TYPE.get(motive_type, CauseFamily.OTHER)


def risk_level_for(alert_count: int, config: IndicatorConfig) -> RiskLevel:
    if alert_count >= config.risk_critical_threshold:
        return RiskLevel.CRITICAL
    if alert_count >= config.risk_high_threshold:
        return RiskLevel.HIGH
    return RiskLevel.MEDIUM


def return_trend_for(return_count: int, config: IndicatorConfig) -> ReturnTrend:
    if return_count >= config.return_rising_threshold:
        return ReturnTrend.RISING
    if return_count <= config.return_declining_threshold:
        return ReturnTrend.DECLINING
    return ReturnTrend.STABLE


def mean_age(birthdates, reference_year: int) -> float:
    """Mean age at year precision; 0 when no birthdate is known."""
    if not birthdates:
        return 0.0
    return float(np.mean([reference_year - d.year for d in birthdates]))


def to_alert_stats(rows: Sequence[q.AlertRow]) -> List[AlertePrecoceStats]:
    return [
        AlertePrecoceStats(
            zone=r.zone,
            type_alerte=r.alert_type,
            niveau_gravite=r.severity,
            date_detection=r.detected_at,
            description=r.description,
        )
        for r in rows
    ]


# ═══════════════════════════════════════════════════════════════════
#  1. VOLUME & LOCALISATION
# ═══════════════════════════════════════════════════════════════════

def build_province_breakdown(
    db: Session, window: PeriodWindow, area: AreaFilter
) -> List[RepartitionProvinceStats]:
    rows = q.province_breakdown(db, window.since, window.now, area)
    shares = percentages([count for _, count in rows])
    return [
        RepartitionProvinceStats(province=province, nombre_pdi=count, pourcentage=pct)
        for (province, count), pct in zip(rows, shares)
    ]


def build_monthly_series(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> List[EvolutionTemporelleStats]:
    buckets = q.monthly_buckets(
        db, window.month_windows(), area, movement_tag=config.permanent_residence_tag
    )
    return [
        EvolutionTemporelleStats(
            periode=b.label,
            nouveaux_deplaces=b.new_displaced,
            retours=b.returns,
            total_cumule=b.cumulative_total,
        )
        for b in buckets
    ]


def build_volume_localisation(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> VolumeLocalisationIndicateurs:
    total_migrants = q.count_active_migrants(db, window.since, window.now, area)
    internal = q.count_internal_displaced(db, window.since, window.now, area)
    returned = q.count_returns(
        db, window.since, window.now, area, movement_tag=config.permanent_residence_tag
    )

    # nombre_total_pdi mirrors nombre_total_migrants; the dashboard relies on it
    return VolumeLocalisationIndicateurs(
        nombre_total_pdi=total_migrants,
        nombre_total_migrants=total_migrants,
        nombre_deplaces_internes=internal,
        personnes_retournees=returned,
        repartition_geographique=build_province_breakdown(db, window, area),
        evolution_mensuelle=build_monthly_series(db, window, area, config),
    )


# ═══════════════════════════════════════════════════════════════════
#  2. CAUSES
# ═══════════════════════════════════════════════════════════════════

def build_causes(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> CausesDeplacementsIndicateurs:
    rows = q.motive_counts(db, window.since, window.now, area)
    total = sum(count for _, count in rows)
    logger.debug("Categorising %d motives (%d types) over %s", total, len(rows), window.label)

    details = []
    family_counts = {family: 0 for family in CauseFamily}
    for motive_type, count in rows:
        details.append(CauseDetailStats(
            type_motif=motive_type,
            nombre_cas=count,
            pourcentage=_ratio_pct(count, total),
        ))
        family_counts[categorise_motive(motive_type)] += count

    return CausesDeplacementsIndicateurs(
        pourcentage_conflits_armes=_ratio_pct(family_counts[CauseFamily.ARMED_CONFLICTS], total),
        pourcentage_catastrophes=_ratio_pct(family_counts[CauseFamily.DISASTERS], total),
        pourcentage_persecution=_ratio_pct(family_counts[CauseFamily.PERSECUTION], total),
        pourcentage_violence_generalisee=_ratio_pct(family_counts[CauseFamily.GENERALISED_VIOLENCE], total),
        pourcentage_autres_causes=_ratio_pct(family_counts[CauseFamily.OTHER], total),
        details_causes=details,
    )


# ═══════════════════════════════════════════════════════════════════
#  3. VULNERABILITY & NEEDS
# ═══════════════════════════════════════════════════════════════════

def basic_services_access(config: IndicatorConfig) -> AccesServicesStats:
    """Fixed figures until a survey source is wired in."""
    return AccesServicesStats(
        acces_eau=config.access_water,
        acces_sante=config.access_health,
        acces_education=config.access_education,
        acces_logement=config.access_housing,
    )


def build_demographic_profile(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> ProfilDemographiqueStats:
    raw = q.demographic_raw(
        db, window.since, window.now, area,
        child_born_after=window.years_back(config.child_age_limit),
        elderly_born_before=window.years_back(config.elderly_age_limit),
    )
    return ProfilDemographiqueStats(
        pourcentage_femmes=_ratio_pct(raw.female, raw.total),
        pourcentage_enfants=_ratio_pct(raw.children, raw.total),
        pourcentage_ages=_ratio_pct(raw.elderly, raw.total),
        age_moyen=mean_age(raw.birthdates, window.today.year),
    )


def build_vulnerability(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> VulnerabiliteBesoinsIndicateurs:
    in_structures, off_site = q.shelter_occupancy(
        db, window.since, window.now, area, official_site_tag=config.official_site_tag
    )
    return VulnerabiliteBesoinsIndicateurs(
        profil_demographique=build_demographic_profile(db, window, area, config),
        acces_services_base=basic_services_access(config),
        taux_occupation_sites=_ratio_pct(in_structures - off_site, in_structures),
        deplaces_hors_sites=off_site,
    )


# ═══════════════════════════════════════════════════════════════════
#  4. DYNAMICS & ALERTS
# ═══════════════════════════════════════════════════════════════════

def build_risk_zones(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> List[ZoneRisqueStats]:
    rows = q.risk_zone_counts(db, window.since, window.now, area, limit=config.risk_zone_limit)
    return [
        ZoneRisqueStats(
            zone=zone,
            niveau_risque=risk_level_for(count, config),
            type_menace=THREAT_TYPE,
            population_risque=count * config.population_per_alert,
        )
        for zone, count in rows
    ]


def build_return_trends(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> List[TendanceRetourStats]:
    rows = q.return_trend_counts(
        db, window.since, window.now, area,
        movement_tag=config.permanent_residence_tag,
        limit=config.return_trend_limit,
    )
    return [
        TendanceRetourStats(
            zone_origine=origin,
            zone_retour=destination,
            nombre_retours=count,
            tendance_evolution=return_trend_for(count, config),
        )
        for origin, destination, count in rows
    ]


def build_dynamics(
    db: Session, window: PeriodWindow, area: AreaFilter, config: IndicatorConfig
) -> DynamiquesAlerteIndicateurs:
    early = q.recent_alerts(db, window.since, window.now, area, limit=config.early_alert_limit)
    mass_movements = q.count_active_migrants(
        db, window.days_back(config.mass_movement_days), window.now, area
    )
    return DynamiquesAlerteIndicateurs(
        zones_haut_risque=build_risk_zones(db, window, area, config),
        tendances_retour=build_return_trends(db, window, area, config),
        alertes_precoces=to_alert_stats(early),
        mouvements_massifs_recent=mass_movements,
    )
