"""
Period and area resolution for the overview indicators.

A request names a period in months (``periode``) and optionally an area
(``province`` for a city, ``pays`` for a country). Both are turned into
small immutable values here so the query layer never parses raw strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Union

from dateutil.relativedelta import relativedelta


# ── Area filter ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class City:
    """Exact match on the migrant's current city / the geolocation city."""
    name: str


@dataclass(frozen=True)
class Country:
    """Substring match on the migrant's current country / the geolocation country."""
    name: str


AreaFilter = Optional[Union[City, Country]]


def resolve_area(province: Optional[str] = None, pays: Optional[str] = None) -> AreaFilter:
    """Build the area filter from query parameters. ``province`` wins over ``pays``."""
    if province and province.strip():
        return City(province.strip())
    if pays and pays.strip():
        return Country(pays.strip())
    return None


def area_label(area: AreaFilter) -> str:
    return area.name if area is not None else ""


# ── Period ───────────────────────────────────────────────────────────────

def parse_bounded_int(raw, default: int, lower: int, upper: int) -> int:
    """Parse an integer query parameter; anything invalid or out of range gives ``default``."""
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if value < lower or value > upper:
        return default
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def naive_utc(moment: datetime) -> datetime:
    # Timestamps are stored as naive UTC
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def as_utc(moment: datetime) -> datetime:
    """Stored naive UTC timestamp as an aware one, so it serialises with an offset."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class MonthWindow:
    label: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class PeriodWindow:
    """Half-open analysis window ``[since, now)`` covering ``months`` calendar months."""
    months: int
    now: datetime
    since: datetime

    @classmethod
    def ending_at(cls, now: datetime, months: int) -> "PeriodWindow":
        now = naive_utc(now)
        return cls(months=months, now=now, since=now - relativedelta(months=months))

    @property
    def label(self) -> str:
        return f"{self.months} derniers mois"

    @property
    def today(self) -> date:
        return self.now.date()

    def days_back(self, days: int) -> datetime:
        return self.now - timedelta(days=days)

    def years_back(self, years: int) -> date:
        return self.today - relativedelta(years=years)

    def month_windows(self) -> List[MonthWindow]:
        """Oldest first; consecutive windows share their boundary."""
        windows = []
        for i in range(self.months - 1, -1, -1):
            start = self.now - relativedelta(months=i + 1)
            end = self.now - relativedelta(months=i)
            windows.append(MonthWindow(label=start.strftime("%Y-%m"), start=start, end=end))
        return windows
