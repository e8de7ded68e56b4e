"""
Overview assembler: stateless facade behind /api/overview.

Resolves the request parameters, runs the indicator builders and stamps the
generation metadata. The four builders of the full document are fanned out on
the shared worker pool, each with its own session; they share one
``CancelScope`` so a timeout or the first failure interrupts the statement
each builder is running and stops it before the next one. Results are
all-or-nothing, and a request that ends past its deadline is a timeout.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, wait
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from sysmobembo.core.worker_pool import get_pool
from sysmobembo.models.alert import AlertSeverity
from sysmobembo.schemas.overview import (
    AlertesTempsReelResponse,
    CausesDetailleesResponse,
    ChartDataPoint,
    IndicateursDeplacementResponse,
    MotifPieChartResponse,
    RepartitionGeographiqueResponse,
    TendancesEvolutionResponse,
)
from sysmobembo.services import indicator_queries as q
from sysmobembo.services.indicator_builders import (
    build_causes,
    build_dynamics,
    build_monthly_series,
    build_province_breakdown,
    build_volume_localisation,
    build_vulnerability,
    to_alert_stats,
)
from sysmobembo.services.indicator_config import IndicatorConfig
from sysmobembo.services.periods import (
    AreaFilter,
    PeriodWindow,
    area_label,
    naive_utc,
    parse_bounded_int,
    resolve_area,
    utc_now,
)

logger = logging.getLogger("sysmobembo.services.overview")

Job = Callable[[Session], Any]

DEFAULT_ALERT_LEVELS = [AlertSeverity.DANGER.value, AlertSeverity.CRITICAL.value]
KNOWN_ALERT_LEVELS = {s.value for s in AlertSeverity}

MOTIF_LABELS = {
    "economique": "Économique",
    "politique": "Politique",
    "persecution": "Persécution",
    "naturelle": "Catastrophe Naturelle",
    "familial": "Familial",
    "education": "Éducation",
    "sanitaire": "Sanitaire",
    "conflit_arme": "Conflit Armé",
    "catastrophe_naturelle": "Catastrophe Naturelle",
    "violence_generalisee": "Violence Généralisée",
}


def _context(months: int, area: AreaFilter) -> str:
    return f"periode={months}, zone={area_label(area)!r}"


class IndicatorsTimeout(Exception):
    """The request did not complete before its deadline."""


class InvalidParameter(ValueError):
    """A query parameter that has no sensible default was rejected."""


def parse_alert_levels(raw: Optional[str]) -> List[str]:
    """Comma-separated severity list; blank entries are ignored, empty means the default."""
    if raw is None:
        return list(DEFAULT_ALERT_LEVELS)
    levels = [level.strip() for level in raw.split(",") if level.strip()]
    if not levels:
        return list(DEFAULT_ALERT_LEVELS)
    unknown = sorted(set(levels) - KNOWN_ALERT_LEVELS)
    if unknown:
        raise InvalidParameter(f"Niveau(x) de gravité inconnu(s): {', '.join(unknown)}")
    return levels


class OverviewService:
    def __init__(
        self,
        session_factory: sessionmaker,
        config: Optional[IndicatorConfig] = None,
        *,
        timeout: Optional[float] = 10.0,
        fan_out: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.config = config or IndicatorConfig()
        self.timeout = timeout
        self.fan_out = fan_out
        self.clock = clock

    # ── Parameter resolution ───────────────────────────────────────

    def resolve_months(self, raw, default: Optional[int] = None) -> int:
        return parse_bounded_int(
            raw,
            default or self.config.default_period_months,
            1,
            self.config.max_period_months,
        )

    def window(self, raw_months, default: Optional[int] = None) -> PeriodWindow:
        return PeriodWindow.ending_at(self.clock(), self.resolve_months(raw_months, default))

    # ── Execution ──────────────────────────────────────────────────

    def _run_job(self, job: Job, scope: q.CancelScope):
        db = self.session_factory()
        try:
            q.attach_scope(db, scope)
            return job(db)
        finally:
            q.detach_scope(db)
            db.close()

    def _run_serial(self, jobs: Dict[str, Job], scope: q.CancelScope) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            q.attach_scope(db, scope)
            results = {name: job(db) for name, job in jobs.items()}
        finally:
            q.detach_scope(db)
            db.close()
        if scope.cancelled:
            raise IndicatorsTimeout("deadline passed before the results were assembled")
        return results

    def _run_fanned_out(self, jobs: Dict[str, Job], scope: q.CancelScope) -> Dict[str, Any]:
        pool = get_pool()
        futures = {name: pool.submit(self._run_job, job, scope) for name, job in jobs.items()}
        done, pending = wait(futures.values(), timeout=scope.remaining(), return_when=FIRST_EXCEPTION)

        failed = [f for f in futures.values() if f in done and f.exception() is not None]
        # Report the root failure, not the builders it cancelled
        failed.sort(key=lambda f: isinstance(f.exception(), q.QueryCancelled))
        if failed or pending:
            scope.cancel()
            for f in pending:
                f.cancel()
        if failed:
            raise failed[0].exception()
        if pending:
            raise IndicatorsTimeout(f"{len(pending)} builder(s) still running at the deadline")
        return {name: f.result() for name, f in futures.items()}

    def run(self, jobs: Dict[str, Job], context: str) -> Dict[str, Any]:
        """Run every job under one deadline; raise on the first failure, never return partial results."""
        try:
            with q.CancelScope(self.timeout) as scope:
                if self.fan_out and len(jobs) > 1:
                    return self._run_fanned_out(jobs, scope)
                return self._run_serial(jobs, scope)
        except q.QueryCancelled as e:
            logger.warning("Indicators deadline reached in %s (%s)", e.primitive, context)
            raise IndicatorsTimeout(str(e)) from e
        except IndicatorsTimeout:
            logger.warning("Indicators deadline reached (%s)", context)
            raise
        except q.QueryError as e:
            logger.error("Query primitive %s failed (%s): %s", e.primitive, context, e.cause)
            raise

    # ── Full document ──────────────────────────────────────────────

    def _indicators(self, window: PeriodWindow, area: AreaFilter, label: str) -> IndicateursDeplacementResponse:
        cfg = self.config
        parts = self.run(
            {
                "volume_localisation": lambda db: build_volume_localisation(db, window, area, cfg),
                "causes_deplacements": lambda db: build_causes(db, window, area, cfg),
                "vulnerabilite_besoins": lambda db: build_vulnerability(db, window, area, cfg),
                "dynamiques_alerte": lambda db: build_dynamics(db, window, area, cfg),
            },
            _context(window.months, area),
        )
        return IndicateursDeplacementResponse(
            **parts,
            date_generation=self.clock(),
            periode_analyse=label,
        )

    def indicators(self, periode=None, province: Optional[str] = None, pays: Optional[str] = None):
        window = self.window(periode)
        return self._indicators(window, resolve_area(province, pays), window.label)

    def province_indicators(self, province: str, periode=None):
        window = self.window(periode)
        area = resolve_area(province)
        return self._indicators(window, area, f"{window.label} - Province: {area_label(area)}")

    # ── Narrow variants ────────────────────────────────────────────

    def realtime_alerts(
        self,
        niveaux: Optional[str] = None,
        province: Optional[str] = None,
        pays: Optional[str] = None,
        jours=None,
    ) -> AlertesTempsReelResponse:
        levels = parse_alert_levels(niveaux)
        days = parse_bounded_int(jours, self.config.default_alert_days, 1, self.config.max_alert_days)
        area = resolve_area(province, pays)
        now = naive_utc(self.clock())
        since = now - timedelta(days=days)

        rows = self.run(
            {"alerts": lambda db: q.recent_alerts(db, since, now, area, severities=levels)},
            f"jours={days}, niveaux={','.join(levels)}, zone={area_label(area)!r}",
        )["alerts"]
        alerts = to_alert_stats(rows)
        return AlertesTempsReelResponse(
            alertes_actives=alerts,
            nombre_total=len(alerts),
            date_mise_a_jour=self.clock(),
        )

    def repartition(self, periode=None) -> RepartitionGeographiqueResponse:
        window = self.window(periode)
        rows = self.run(
            {"repartition": lambda db: build_province_breakdown(db, window, None)},
            _context(window.months, None),
        )["repartition"]
        return RepartitionGeographiqueResponse(
            repartition_provinces=rows,
            date_mise_a_jour=self.clock(),
            periode_analyse=window.label,
        )

    def motif_pie(self, periode=None, province: Optional[str] = None, pays: Optional[str] = None):
        window = self.window(periode)
        area = resolve_area(province, pays)
        rows = self.run(
            {"motifs": lambda db: q.motive_counts(db, window.since, window.now, area)},
            _context(window.months, area),
        )["motifs"]
        data = [
            ChartDataPoint(name=MOTIF_LABELS.get(motive, motive), value=float(count), extra=motive)
            for motive, count in rows
        ]
        return MotifPieChartResponse(
            data=data,
            total=sum(count for _, count in rows),
            date_mise_a_jour=self.clock(),
            periode_analyse=window.label,
        )

    def trends(self, periode=None, province: Optional[str] = None, pays: Optional[str] = None):
        window = self.window(periode, default=self.config.default_trend_months)
        area = resolve_area(province, pays)
        series = self.run(
            {"evolution": lambda db: build_monthly_series(db, window, area, self.config)},
            _context(window.months, area),
        )["evolution"]
        return TendancesEvolutionResponse(
            evolution_mensuelle=series,
            periode_analyse=window.label,
            province=area_label(area),
            date_generation=self.clock(),
        )

    def causes(self, periode=None, province: Optional[str] = None, pays: Optional[str] = None):
        window = self.window(periode)
        area = resolve_area(province, pays)
        causes = self.run(
            {"causes": lambda db: build_causes(db, window, area, self.config)},
            _context(window.months, area),
        )["causes"]
        return CausesDetailleesResponse(
            causes_deplacements=causes,
            periode_analyse=window.label,
            province=area_label(area),
            date_generation=self.clock(),
        )
