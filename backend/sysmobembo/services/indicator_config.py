"""Tunable constants of the indicator engine, gathered in one record."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IndicatorConfig:
    # Dynamics
    risk_high_threshold: int = 20
    risk_critical_threshold: int = 50
    population_per_alert: int = 10
    return_rising_threshold: int = 100
    return_declining_threshold: int = 10
    mass_movement_days: int = 30
    risk_zone_limit: int = 10
    return_trend_limit: int = 10
    early_alert_limit: int = 20

    # Demographics
    child_age_limit: int = 18
    elderly_age_limit: int = 65

    # Basic services access
    access_water: float = 75.5
    access_health: float = 68.2
    access_education: float = 82.3
    access_housing: float = 58.7

    # Record tags
    permanent_residence_tag: str = "residence_permanente"
    official_site_tag: str = "site_officiel"

    # Periods
    default_period_months: int = 12
    max_period_months: int = 120
    default_trend_months: int = 24
    default_alert_days: int = 7
    max_alert_days: int = 365

    @classmethod
    def from_settings(cls, settings) -> "IndicatorConfig":
        return cls(**{name: getattr(settings, name) for name in cls.__dataclass_fields__})
