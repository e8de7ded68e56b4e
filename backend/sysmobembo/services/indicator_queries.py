"""
Read primitives behind the displacement indicators.

Every primitive takes a SQLAlchemy session, a half-open time range
``[since, until)`` and an optional area filter, and returns a small row set.
Primitives never write, never open a transaction of their own and only rely
on the ordering they request explicitly.

Failures surface as ``QueryError`` carrying the primitive name. Once the
request's ``CancelScope`` has been cancelled or its deadline has passed, no
further statement is issued and statements in flight are interrupted.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from datetime import date, datetime
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import case, event, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sysmobembo.models.alert import Alert, AlertSeverity, AlertStatus
from sysmobembo.models.geolocalisation import Geolocalisation
from sysmobembo.models.migrant import Migrant
from sysmobembo.models.motif_deplacement import MotifDeplacement
from sysmobembo.services.periods import AreaFilter, City, Country, MonthWindow, as_utc

logger = logging.getLogger("sysmobembo.services.indicator_queries")

UNKNOWN_CITY = "Non renseignée"
UNKNOWN_MOTIVE = "non_renseigne"

RISK_SEVERITIES = (AlertSeverity.DANGER.value, AlertSeverity.CRITICAL.value)


# ══════════════════════════════════════════════════════════════════════════
#  ERRORS & CANCELLATION
# ══════════════════════════════════════════════════════════════════════════

class QueryError(Exception):
    """A primitive failed against the database (timeout, connectivity, bad SQL)."""

    def __init__(self, primitive: str, cause: Exception):
        super().__init__(f"{primitive}: {cause}")
        self.primitive = primitive
        self.cause = cause


class QueryCancelled(Exception):
    """A primitive was not run because its request was cancelled or timed out."""

    def __init__(self, primitive: str):
        super().__init__(f"{primitive} cancelled")
        self.primitive = primitive


class CancelScope:
    """Cancellation signal and deadline shared by all primitives of one request.

    Used as a context manager, the scope cancels itself when the deadline
    passes. Cancelling interrupts every statement still running on a
    connection checked out under the scope.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._interrupts = {}
        self._timer = None
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout else None

    def __enter__(self):
        if self.deadline is not None:
            self._timer = threading.Timer(self.remaining(), self.cancel)
            self._timer.daemon = True
            self._timer.start()
        return self

    def __exit__(self, *exc_info):
        if self._timer is not None:
            self._timer.cancel()
        return False

    def track(self, session: Session, interrupt, dbapi_error):
        """Remember how to abort the statement running on ``session``'s connection."""
        with self._lock:
            self._interrupts[id(session)] = (interrupt, dbapi_error)
        if self._event.is_set():
            self._interrupt(interrupt, dbapi_error)

    def forget(self, session: Session):
        with self._lock:
            self._interrupts.pop(id(session), None)

    @staticmethod
    def _interrupt(interrupt, dbapi_error):
        try:
            interrupt()
        except dbapi_error as exc:
            logger.debug("Statement interrupt failed: %s", exc)

    def cancel(self):
        self._event.set()
        with self._lock:
            for interrupt, dbapi_error in list(self._interrupts.values()):
                self._interrupt(interrupt, dbapi_error)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self, primitive: str):
        if self.cancelled:
            raise QueryCancelled(primitive)


SCOPE_KEY = "cancel_scope"
PRIMITIVE_KEY = "current_primitive"


def attach_scope(db: Session, scope: CancelScope):
    db.info[SCOPE_KEY] = scope


def detach_scope(db: Session):
    scope = db.info.pop(SCOPE_KEY, None)
    if scope is not None:
        scope.forget(db)


@event.listens_for(Session, "after_begin")
def _track_connection(session, transaction, connection):
    scope = session.info.get(SCOPE_KEY)
    if scope is None:
        return
    dbapi_connection = connection.connection.dbapi_connection
    # psycopg2 exposes cancel(), sqlite3 exposes interrupt()
    interrupt = getattr(dbapi_connection, "cancel", None) or getattr(dbapi_connection, "interrupt", None)
    if interrupt is not None:
        scope.track(session, interrupt, connection.dialect.dbapi.Error)


@event.listens_for(Session, "do_orm_execute")
def _check_deadline(orm_execute_state):
    session = orm_execute_state.session
    scope = session.info.get(SCOPE_KEY)
    if scope is not None:
        scope.raise_if_cancelled(session.info.get(PRIMITIVE_KEY, "query"))


def query_primitive(name: str):
    """Check cancellation before every statement and wrap database errors with the primitive name."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(db: Session, *args, **kwargs):
            scope = db.info.get(SCOPE_KEY)
            if scope is not None:
                scope.raise_if_cancelled(name)
            db.info[PRIMITIVE_KEY] = name
            try:
                return fn(db, *args, **kwargs)
            except SQLAlchemyError as exc:
                if scope is not None and scope.cancelled:
                    # Statement interrupted by the scope
                    raise QueryCancelled(name) from exc
                logger.debug("Primitive %s failed: %s", name, exc)
                raise QueryError(name, exc) from exc
            finally:
                db.info.pop(PRIMITIVE_KEY, None)
        wrapper.primitive_name = name
        return wrapper
    return decorator


# ══════════════════════════════════════════════════════════════════════════
#  ROW TYPES
# ══════════════════════════════════════════════════════════════════════════

class MonthlyBucket(NamedTuple):
    label: str
    new_displaced: int
    returns: int
    cumulative_total: int


class DemographicRaw(NamedTuple):
    total: int
    female: int
    children: int
    elderly: int
    birthdates: List[date]


class AlertRow(NamedTuple):
    zone: str
    alert_type: str
    severity: str
    detected_at: datetime
    description: str


# ══════════════════════════════════════════════════════════════════════════
#  FILTER HELPERS
# ══════════════════════════════════════════════════════════════════════════

def _active_migrant() -> list:
    return [
        Migrant.actif == True,  # noqa: E712
        Migrant.deleted_at.is_(None),
    ]


def _migrant_area(area: AreaFilter) -> list:
    if isinstance(area, City):
        return [Migrant.ville_actuelle == area.name]
    if isinstance(area, Country):
        return [Migrant.pays_actuel.contains(area.name, autoescape=True)]
    return []


def _geo_area(area: AreaFilter) -> list:
    if isinstance(area, City):
        return [Geolocalisation.ville == area.name]
    if isinstance(area, Country):
        return [Geolocalisation.pays.contains(area.name, autoescape=True)]
    return []


def _between(column, since: Optional[datetime], until: datetime) -> list:
    conditions = [column < until]
    if since is not None:
        conditions.append(column >= since)
    return conditions


def _migrants_created(db: Session, since: Optional[datetime], until: datetime, area: AreaFilter) -> int:
    return (
        db.query(func.count(Migrant.uuid))
        .filter(*_active_migrant(), *_between(Migrant.created_at, since, until), *_migrant_area(area))
        .scalar()
    ) or 0


def _returns_between(db: Session, since: datetime, until: datetime, area: AreaFilter, movement_tag: str) -> int:
    return (
        db.query(func.count(Geolocalisation.uuid))
        .join(Migrant, Geolocalisation.migrant_uuid == Migrant.uuid)
        .filter(
            Geolocalisation.type_mouvement == movement_tag,
            Geolocalisation.deleted_at.is_(None),
            *_between(Geolocalisation.created_at, since, until),
            *_active_migrant(),
            *_geo_area(area),
        )
        .scalar()
    ) or 0


# ══════════════════════════════════════════════════════════════════════════
#  PRIMITIVES
# ══════════════════════════════════════════════════════════════════════════

@query_primitive("count_active_migrants")
def count_active_migrants(db: Session, since: datetime, until: datetime, area: AreaFilter = None) -> int:
    return _migrants_created(db, since, until, area)


@query_primitive("count_internal_displaced")
def count_internal_displaced(db: Session, since: datetime, until: datetime, area: AreaFilter = None) -> int:
    """Active migrants still in their origin country but away from their birth place."""
    return (
        db.query(func.count(Migrant.uuid))
        .filter(
            *_active_migrant(),
            *_between(Migrant.created_at, since, until),
            Migrant.pays_origine == Migrant.pays_actuel,
            Migrant.lieu_naissance != Migrant.ville_actuelle,
            *_migrant_area(area),
        )
        .scalar()
    ) or 0


@query_primitive("count_returns")
def count_returns(
    db: Session,
    since: datetime,
    until: datetime,
    area: AreaFilter = None,
    movement_tag: str = "residence_permanente",
) -> int:
    return _returns_between(db, since, until, area, movement_tag)


@query_primitive("province_breakdown")
def province_breakdown(
    db: Session, since: datetime, until: datetime, area: AreaFilter = None
) -> List[Tuple[str, int]]:
    """(city, count) for active migrants, largest first."""
    city = func.coalesce(Migrant.ville_actuelle, UNKNOWN_CITY).label("province")
    count = func.count(Migrant.uuid).label("count")
    rows = (
        db.query(city, count)
        .filter(*_active_migrant(), *_between(Migrant.created_at, since, until), *_migrant_area(area))
        .group_by(city)
        .order_by(count.desc(), city.asc())
        .all()
    )
    return [(r.province, int(r.count)) for r in rows]


@query_primitive("monthly_buckets")
def monthly_buckets(
    db: Session,
    windows: Sequence[MonthWindow],
    area: AreaFilter = None,
    movement_tag: str = "residence_permanente",
) -> List[MonthlyBucket]:
    """New arrivals, returns and running total for each half-open month window."""
    buckets = []
    for window in windows:
        buckets.append(MonthlyBucket(
            label=window.label,
            new_displaced=_migrants_created(db, window.start, window.end, area),
            returns=_returns_between(db, window.start, window.end, area, movement_tag),
            cumulative_total=_migrants_created(db, None, window.end, area),
        ))
    return buckets


@query_primitive("motive_counts")
def motive_counts(
    db: Session, since: datetime, until: datetime, area: AreaFilter = None
) -> List[Tuple[str, int]]:
    """(motive type, count) for motives of active migrants, largest first."""
    motive = func.coalesce(MotifDeplacement.type_motif, UNKNOWN_MOTIVE).label("type_motif")
    count = func.count(MotifDeplacement.uuid).label("count")
    rows = (
        db.query(motive, count)
        .join(Migrant, MotifDeplacement.migrant_uuid == Migrant.uuid)
        .filter(
            MotifDeplacement.deleted_at.is_(None),
            *_between(MotifDeplacement.created_at, since, until),
            *_active_migrant(),
            *_migrant_area(area),
        )
        .group_by(motive)
        .order_by(count.desc(), motive.asc())
        .all()
    )
    return [(r.type_motif, int(r.count)) for r in rows]


@query_primitive("shelter_occupancy")
def shelter_occupancy(
    db: Session,
    since: datetime,
    until: datetime,
    area: AreaFilter = None,
    official_site_tag: str = "site_officiel",
) -> Tuple[int, int]:
    """(rows in structures, rows outside an official site). A missing shelter type counts as off-site."""
    off_site = or_(
        Geolocalisation.type_hebergement.is_(None),
        Geolocalisation.type_hebergement != official_site_tag,
    )
    total, outside = (
        db.query(
            func.count(Geolocalisation.uuid),
            func.sum(case((off_site, 1), else_=0)),
        )
        .join(Migrant, Geolocalisation.migrant_uuid == Migrant.uuid)
        .filter(
            Geolocalisation.deleted_at.is_(None),
            *_between(Geolocalisation.created_at, since, until),
            *_active_migrant(),
            *_geo_area(area),
        )
        .one()
    )
    return int(total or 0), int(outside or 0)


@query_primitive("demographic_raw")
def demographic_raw(
    db: Session,
    since: datetime,
    until: datetime,
    area: AreaFilter = None,
    *,
    child_born_after: date,
    elderly_born_before: date,
) -> DemographicRaw:
    filters = [*_active_migrant(), *_between(Migrant.created_at, since, until), *_migrant_area(area)]

    total, female, children, elderly = (
        db.query(
            func.count(Migrant.uuid),
            func.sum(case((Migrant.sexe == "F", 1), else_=0)),
            func.sum(case((Migrant.date_naissance > child_born_after, 1), else_=0)),
            func.sum(case((Migrant.date_naissance < elderly_born_before, 1), else_=0)),
        )
        .filter(*filters)
        .one()
    )
    birthdates = [
        r[0] for r in
        db.query(Migrant.date_naissance)
        .filter(*filters, Migrant.date_naissance.isnot(None))
        .all()
    ]
    return DemographicRaw(
        total=int(total or 0),
        female=int(female or 0),
        children=int(children or 0),
        elderly=int(elderly or 0),
        birthdates=birthdates,
    )


@query_primitive("risk_zone_counts")
def risk_zone_counts(
    db: Session,
    since: datetime,
    until: datetime,
    area: AreaFilter = None,
    limit: int = 10,
) -> List[Tuple[str, int]]:
    """(zone, alert count) for active danger/critical alerts, grouped by the migrant's current city."""
    zone = func.coalesce(Migrant.ville_actuelle, UNKNOWN_CITY).label("zone")
    count = func.count(Alert.uuid).label("count")
    rows = (
        db.query(zone, count)
        .join(Migrant, Alert.migrant_uuid == Migrant.uuid)
        .filter(
            Alert.niveau_gravite.in_(RISK_SEVERITIES),
            Alert.statut == AlertStatus.ACTIVE.value,
            Alert.deleted_at.is_(None),
            *_between(Alert.created_at, since, until),
            *_active_migrant(),
            *_migrant_area(area),
        )
        .group_by(zone)
        .order_by(count.desc(), zone.asc())
        .limit(limit)
        .all()
    )
    return [(r.zone, int(r.count)) for r in rows]


@query_primitive("return_trend_counts")
def return_trend_counts(
    db: Session,
    since: datetime,
    until: datetime,
    area: AreaFilter = None,
    movement_tag: str = "residence_permanente",
    limit: int = 10,
) -> List[Tuple[str, str, int]]:
    """(origin = birth place, return zone = geolocation city, count), largest first."""
    origin = func.coalesce(Migrant.lieu_naissance, UNKNOWN_CITY).label("origin")
    destination = func.coalesce(Geolocalisation.ville, UNKNOWN_CITY).label("destination")
    count = func.count(Geolocalisation.uuid).label("count")
    rows = (
        db.query(origin, destination, count)
        .join(Migrant, Geolocalisation.migrant_uuid == Migrant.uuid)
        .filter(
            Geolocalisation.type_mouvement == movement_tag,
            Geolocalisation.deleted_at.is_(None),
            *_between(Geolocalisation.created_at, since, until),
            *_active_migrant(),
            *_geo_area(area),
        )
        .group_by(origin, destination)
        .order_by(count.desc(), origin.asc(), destination.asc())
        .limit(limit)
        .all()
    )
    return [(r.origin, r.destination, int(r.count)) for r in rows]


@query_primitive("recent_alerts")
def recent_alerts(
    db: Session,
    since: datetime,
    until: datetime,
    area: AreaFilter = None,
    severities: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
) -> List[AlertRow]:
    """Active alerts of active migrants, newest first; ``severities=None`` keeps every level."""
    query = (
        db.query(
            Migrant.ville_actuelle,
            Alert.type_alerte,
            Alert.niveau_gravite,
            Alert.created_at,
            Alert.description,
        )
        .join(Migrant, Alert.migrant_uuid == Migrant.uuid)
        .filter(
            Alert.statut == AlertStatus.ACTIVE.value,
            Alert.deleted_at.is_(None),
            *_between(Alert.created_at, since, until),
            *_active_migrant(),
            *_migrant_area(area),
        )
    )
    if severities is not None:
        query = query.filter(Alert.niveau_gravite.in_(list(severities)))
    query = query.order_by(Alert.created_at.desc(), Alert.uuid.asc())
    if limit is not None:
        query = query.limit(limit)

    return [
        AlertRow(
            zone=r[0] or UNKNOWN_CITY,
            alert_type=r[1],
            severity=r[2],
            detected_at=as_utc(r[3]),
            description=r[4] or "",
        )
        for r in query.all()
    ]
