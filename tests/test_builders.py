"""Tests for the query primitives and indicator builders, against SQLite."""

from __future__ import annotations

import time
from datetime import date, datetime

import pytest
from sqlalchemy.exc import OperationalError

from factories import add_alerts, add_geo, add_migrant, add_motif, recent
from sysmobembo.schemas.overview import ReturnTrend, RiskLevel
from sysmobembo.services import indicator_queries as q
from sysmobembo.services.indicator_builders import (
    CauseFamily,
    build_causes,
    build_dynamics,
    build_monthly_series,
    build_province_breakdown,
    build_risk_zones,
    build_volume_localisation,
    build_vulnerability,
    categorise_motive,
    mean_age,
    percentages,
    return_trend_for,
    risk_level_for,
)
from sysmobembo.services.indicator_config import IndicatorConfig
from sysmobembo.services.periods import City, Country, PeriodWindow, utc_now

CONFIG = IndicatorConfig()


def window(months=12):
    return PeriodWindow.ending_at(utc_now(), months)


# ── Pure helpers ──────────────────────────────────────────────────

@pytest.mark.parametrize("count, level", [
    (49, RiskLevel.HIGH),
    (50, RiskLevel.CRITICAL),
    (19, RiskLevel.MEDIUM),
    (20, RiskLevel.HIGH),
])
def test_risk_level_thresholds(count, level):
    assert risk_level_for(count, CONFIG) == level


@pytest.mark.parametrize("count, trend", [
    (10, ReturnTrend.DECLINING),
    (11, ReturnTrend.STABLE),
    (99, ReturnTrend.STABLE),
    (100, ReturnTrend.RISING),
])
def test_return_trend_thresholds(count, trend):
    assert return_trend_for(count, CONFIG) == trend


def test_thresholds_follow_config():
    config = IndicatorConfig(risk_high_threshold=2, risk_critical_threshold=5)
    assert risk_level_for(1, config) == RiskLevel.MEDIUM
    assert risk_level_for(2, config) == RiskLevel.HIGH
    assert risk_level_for(5, config) == RiskLevel.CRITICAL


def test_percentages():
    assert percentages([]) == []
    assert percentages([0, 0]) == [0.0, 0.0]
    assert sum(percentages([1, 1, 1])) == pytest.approx(100.0)
    assert percentages([3, 1]) == pytest.approx([75.0, 25.0])


def test_categorise_motive_english_and_french_tags():
    assert categorise_motive("armed_conflict") == CauseFamily.ARMED_CONFLICTS
    assert categorise_motive("guerre") == CauseFamily.ARMED_CONFLICTS
    assert categorise_motive("inondation") == CauseFamily.DISASTERS
    assert categorise_motive("persecution_ethnique") == CauseFamily.PERSECUTION
    assert categorise_motive("criminalite") == CauseFamily.GENERALISED_VIOLENCE
    assert categorise_motive("economique") == CauseFamily.OTHER


def test_mean_age():
    assert mean_age([], 2024) == 0.0
    assert mean_age([date(2000, 1, 1), date(1990, 6, 1)], 2020) == pytest.approx(25.0)


# ── Volume & localisation ─────────────────────────────────────────

def test_single_young_woman_in_kinshasa(db):
    today = date.today()
    add_migrant(db, ville_actuelle="Kinshasa", sexe="F", date_naissance=date(today.year - 16, 1, 1))
    w = window(1)

    volume = build_volume_localisation(db, w, None, CONFIG)
    vulnerability = build_vulnerability(db, w, None, CONFIG)

    assert volume.nombre_total_migrants == 1
    assert volume.nombre_total_pdi == 1
    assert [(p.province, p.nombre_pdi, p.pourcentage) for p in volume.repartition_geographique] == [
        ("Kinshasa", 1, 100.0)
    ]
    assert vulnerability.profil_demographique.pourcentage_femmes == pytest.approx(100.0)
    assert vulnerability.profil_demographique.pourcentage_enfants == pytest.approx(100.0)
    assert vulnerability.profil_demographique.pourcentage_ages == 0.0


def test_inserting_a_migrant_only_moves_its_city(db):
    add_migrant(db, ville_actuelle="Goma")
    add_migrant(db, ville_actuelle="Bukavu")
    w = window()
    before = build_volume_localisation(db, w, None, CONFIG)

    add_migrant(db, ville_actuelle="Goma", pays_origine="Rwanda")
    after = build_volume_localisation(db, window(), None, CONFIG)

    counts_before = {p.province: p.nombre_pdi for p in before.repartition_geographique}
    counts_after = {p.province: p.nombre_pdi for p in after.repartition_geographique}
    assert after.nombre_total_migrants == before.nombre_total_migrants + 1
    assert counts_after["Goma"] == counts_before["Goma"] + 1
    assert counts_after["Bukavu"] == counts_before["Bukavu"]
    assert after.nombre_deplaces_internes == before.nombre_deplaces_internes
    assert after.personnes_retournees == before.personnes_retournees


def test_province_breakdown_sums_to_total(db):
    for city, n in (("Goma", 3), ("Kinshasa", 2), ("Bukavu", 1)):
        for _ in range(n):
            add_migrant(db, ville_actuelle=city)
    add_migrant(db, ville_actuelle=None)
    w = window()

    volume = build_volume_localisation(db, w, None, CONFIG)
    rows = volume.repartition_geographique

    assert [p.province for p in rows] == ["Goma", "Kinshasa", "Bukavu", q.UNKNOWN_CITY]
    assert sum(p.nombre_pdi for p in rows) == volume.nombre_total_migrants == 7
    assert sum(p.pourcentage for p in rows) == pytest.approx(100.0, abs=0.5)
    for p in rows:
        if p.province == q.UNKNOWN_CITY:
            continue
        filtered = build_volume_localisation(db, w, City(p.province), CONFIG)
        assert filtered.nombre_total_migrants == p.nombre_pdi


def test_country_filter_is_a_substring_match(db):
    add_migrant(db, pays_actuel="République Démocratique du Congo")
    add_migrant(db, pays_actuel="Ouganda")
    w = window()

    assert q.count_active_migrants(db, w.since, w.now, Country("Congo")) == 1
    assert q.count_active_migrants(db, w.since, w.now, Country("100%")) == 0


def test_inactive_and_deleted_migrants_are_ignored(db):
    add_migrant(db)
    add_migrant(db, actif=False)
    add_migrant(db, deleted_at=datetime.utcnow())
    add_migrant(db, created_at=recent(days=400))
    w = window()

    assert q.count_active_migrants(db, w.since, w.now) == 1


def test_internal_displaced(db):
    add_migrant(db, pays_origine="RDC", pays_actuel="RDC", lieu_naissance="Bukavu", ville_actuelle="Goma")
    add_migrant(db, pays_origine="RDC", pays_actuel="RDC", lieu_naissance="Goma", ville_actuelle="Goma")
    add_migrant(db, pays_origine="Burundi", pays_actuel="RDC", lieu_naissance="Gitega", ville_actuelle="Goma")
    w = window()

    assert q.count_internal_displaced(db, w.since, w.now) == 1


def test_monthly_series_is_cumulative(db):
    for days in (5, 40, 40, 100, 200, 500):
        add_migrant(db, created_at=recent(days=days))
    returning = add_migrant(db, created_at=recent(days=500))
    add_geo(db, returning, "Goma", type_mouvement="residence_permanente", created_at=recent(days=40))
    add_geo(db, returning, "Goma", type_mouvement="transit", created_at=recent(days=40))

    series = build_monthly_series(db, window(), None, CONFIG)

    assert len(series) == 12
    totals = [s.total_cumule for s in series]
    assert totals == sorted(totals)
    assert totals[0] >= 2
    assert totals[-1] == 7
    assert sum(s.nouveaux_deplaces for s in series) == 5
    assert sum(s.retours for s in series) == 1


def test_returns_follow_the_geolocation_city(db):
    migrant = add_migrant(db, ville_actuelle="Kinshasa")
    add_geo(db, migrant, "Goma", type_mouvement="residence_permanente")
    w = window()

    assert q.count_returns(db, w.since, w.now, City("Goma")) == 1
    assert q.count_returns(db, w.since, w.now, City("Kinshasa")) == 0


# ── Causes ────────────────────────────────────────────────────────

def test_cause_families(db):
    migrant = add_migrant(db)
    for tag in ("armed_conflict", "armed_conflict", "flood", "religious_persecution", "criminality"):
        add_motif(db, migrant, tag)

    causes = build_causes(db, window(), None, CONFIG)

    assert causes.pourcentage_conflits_armes == pytest.approx(40.0)
    assert causes.pourcentage_catastrophes == pytest.approx(20.0)
    assert causes.pourcentage_persecution == pytest.approx(20.0)
    assert causes.pourcentage_violence_generalisee == pytest.approx(20.0)
    assert causes.pourcentage_autres_causes == 0.0
    assert causes.details_causes[0].type_motif == "armed_conflict"
    assert causes.details_causes[0].nombre_cas == 2
    assert sum(d.pourcentage for d in causes.details_causes) == pytest.approx(100.0, abs=0.5)


def test_cause_families_without_motives_are_zero(db):
    causes = build_causes(db, window(), None, CONFIG)

    assert causes.details_causes == []
    assert (
        causes.pourcentage_conflits_armes,
        causes.pourcentage_catastrophes,
        causes.pourcentage_persecution,
        causes.pourcentage_violence_generalisee,
        causes.pourcentage_autres_causes,
    ) == (0.0, 0.0, 0.0, 0.0, 0.0)


def test_family_percentages_sum_to_hundred(db):
    migrant = add_migrant(db)
    for tag in ("guerre", "economique", "secheresse", None, "insecurite", "familial", "economique"):
        add_motif(db, migrant, tag)
    add_motif(db, migrant, "guerre", deleted_at=datetime.utcnow())

    causes = build_causes(db, window(), None, CONFIG)

    total = (
        causes.pourcentage_conflits_armes
        + causes.pourcentage_catastrophes
        + causes.pourcentage_persecution
        + causes.pourcentage_violence_generalisee
        + causes.pourcentage_autres_causes
    )
    assert total == pytest.approx(100.0, abs=0.5)
    assert sum(d.nombre_cas for d in causes.details_causes) == 7
    assert q.UNKNOWN_MOTIVE in {d.type_motif for d in causes.details_causes}


# ── Vulnerability ─────────────────────────────────────────────────

def test_shelter_occupancy_counts_missing_type_as_off_site(db):
    migrant = add_migrant(db)
    add_geo(db, migrant, "Goma", type_hebergement="site_officiel")
    add_geo(db, migrant, "Goma", type_hebergement="famille_accueil")
    add_geo(db, migrant, "Goma", type_hebergement=None)

    vulnerability = build_vulnerability(db, window(), None, CONFIG)

    assert vulnerability.deplaces_hors_sites == 2
    assert vulnerability.taux_occupation_sites == pytest.approx(100.0 / 3)


def test_demographic_profile(db):
    today = date.today()
    add_migrant(db, sexe="F", date_naissance=date(today.year - 10, 1, 1))
    add_migrant(db, sexe="M", date_naissance=date(today.year - 70, 1, 1))
    add_migrant(db, sexe="F", date_naissance=date(today.year - 40, 1, 1))
    add_migrant(db, sexe="M", date_naissance=None)

    profile = build_vulnerability(db, window(), None, CONFIG).profil_demographique

    assert profile.pourcentage_femmes == pytest.approx(50.0)
    assert profile.pourcentage_enfants == pytest.approx(25.0)
    assert profile.pourcentage_ages == pytest.approx(25.0)
    assert profile.age_moyen == pytest.approx(40.0)


def test_empty_vulnerability(db):
    vulnerability = build_vulnerability(db, window(), None, CONFIG)

    assert vulnerability.taux_occupation_sites == 0.0
    assert vulnerability.deplaces_hors_sites == 0
    assert vulnerability.profil_demographique.age_moyen == 0.0
    assert vulnerability.acces_services_base.acces_eau == 75.5
    assert vulnerability.acces_services_base.acces_logement == 58.7


# ── Dynamics ──────────────────────────────────────────────────────

def test_goma_is_a_critical_zone(db):
    goma = add_migrant(db, ville_actuelle="Goma")
    add_alerts(db, goma, 55, niveau_gravite="danger")
    beni = add_migrant(db, ville_actuelle="Beni")
    add_alerts(db, beni, 20, niveau_gravite="critical")
    add_alerts(db, beni, 5, niveau_gravite="warning")
    add_alerts(db, beni, 5, niveau_gravite="danger", statut="resolved")

    zones = build_risk_zones(db, window(), None, CONFIG)

    assert [z.zone for z in zones] == ["Goma", "Beni"]
    assert zones[0].niveau_risque == RiskLevel.CRITICAL
    assert zones[0].population_risque == 550
    assert zones[0].type_menace == "MULTIPLE"
    assert zones[1].niveau_risque == RiskLevel.HIGH


def test_dynamics(db):
    migrant = add_migrant(db, ville_actuelle="Goma", lieu_naissance="Bukavu")
    add_migrant(db, created_at=recent(days=60))
    add_geo(db, migrant, "Bukavu", type_mouvement="residence_permanente")
    add_alerts(db, migrant, 25, niveau_gravite="info")

    dynamics = build_dynamics(db, window(), None, CONFIG)

    assert dynamics.mouvements_massifs_recent == 1
    assert len(dynamics.alertes_precoces) == CONFIG.early_alert_limit
    assert dynamics.alertes_precoces[0].zone == "Goma"
    assert dynamics.zones_haut_risque == []
    assert len(dynamics.tendances_retour) == 1
    trend = dynamics.tendances_retour[0]
    assert (trend.zone_origine, trend.zone_retour, trend.nombre_retours) == ("Bukavu", "Bukavu", 1)
    assert trend.tendance_evolution == ReturnTrend.DECLINING


# ── Primitive plumbing ────────────────────────────────────────────

def test_cancelled_scope_stops_primitives(db):
    scope = q.CancelScope()
    q.attach_scope(db, scope)
    scope.cancel()
    w = window()

    with pytest.raises(q.QueryCancelled) as exc:
        q.count_active_migrants(db, w.since, w.now)
    assert exc.value.primitive == "count_active_migrants"


def test_expired_deadline_stops_primitives(db):
    scope = q.CancelScope(timeout=0.01)
    q.attach_scope(db, scope)
    w = window()
    time.sleep(0.05)

    with pytest.raises(q.QueryCancelled):
        build_province_breakdown(db, w, None)


def test_database_errors_carry_the_primitive_name(db):
    @q.query_primitive("broken")
    def broken(session):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    with pytest.raises(q.QueryError) as exc:
        broken(db)
    assert exc.value.primitive == "broken"
    assert isinstance(exc.value.cause, OperationalError)
