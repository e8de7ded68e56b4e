"""
Overview / Dashboard Indicators API
───────────────────────────────────
Endpoints:
  GET  /api/overview/indicateurs             Full displacement indicators document
  GET  /api/overview/alertes                 Real-time alerts feed
  GET  /api/overview/repartition             Geographic breakdown by province
  GET  /api/overview/motifs-pie              Displacement motives (pie chart)
  GET  /api/overview/province/{province}     Full document scoped to one province
  GET  /api/overview/tendances               Monthly evolution series
  GET  /api/overview/causes                  Detailed causes of displacement
"""

from fastapi import APIRouter, Depends, Query, HTTPException
from typing import Optional
import logging

from sysmobembo.core.config import settings
from sysmobembo.core.database import get_session_factory
from sysmobembo.schemas.overview import (
    AlertesTempsReelResponse,
    CausesDetailleesResponse,
    IndicateursDeplacementResponse,
    MotifPieChartResponse,
    RepartitionGeographiqueResponse,
    TendancesEvolutionResponse,
)
from sysmobembo.services.indicator_config import IndicatorConfig
from sysmobembo.services.indicator_queries import QueryError
from sysmobembo.services.overview import (
    IndicatorsTimeout,
    InvalidParameter,
    OverviewService,
)

logger = logging.getLogger("sysmobembo.api.overview")
router = APIRouter(prefix="/api/overview", tags=["Overview"])

COMPUTE_ERROR = "Erreur lors du calcul des indicateurs"
TIMEOUT_ERROR = "Délai dépassé lors du calcul des indicateurs"


def get_overview_service(session_factory=Depends(get_session_factory)) -> OverviewService:
    return OverviewService(
        session_factory,
        IndicatorConfig.from_settings(settings),
        timeout=settings.indicators_timeout_seconds,
        fan_out=settings.indicators_fan_out,
    )


def _compute(label: str, fn, *args, **kwargs):
    """Run one service call and map its failures onto HTTP errors."""
    try:
        return fn(*args, **kwargs)
    except InvalidParameter as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IndicatorsTimeout:
        raise HTTPException(status_code=504, detail=TIMEOUT_ERROR)
    except QueryError as e:
        logger.error("%s error in %s: %s", label, e.primitive, e.cause)
        raise HTTPException(status_code=500, detail=COMPUTE_ERROR)
    except Exception:
        logger.exception("%s error", label)
        raise HTTPException(status_code=500, detail=COMPUTE_ERROR)


# ── Full document ─────────────────────────────────────────────────

@router.get("/indicateurs", response_model=IndicateursDeplacementResponse)
def get_indicateurs(
    periode: Optional[str] = Query(None, description="Période d'analyse en mois (1-120)"),
    province: Optional[str] = Query(None, description="Ville / province actuelle"),
    pays: Optional[str] = Query(None, description="Pays actuel (recherche partielle)"),
    service: OverviewService = Depends(get_overview_service),
):
    """Volume, causes, vulnerability and dynamics indicators over the period."""
    return _compute("Indicators", service.indicators, periode, province, pays)


@router.get("/province/{province}", response_model=IndicateursDeplacementResponse)
def get_indicateurs_province(
    province: str,
    periode: Optional[str] = Query(None),
    service: OverviewService = Depends(get_overview_service),
):
    return _compute("Province indicators", service.province_indicators, province, periode)


# ── Alerts ────────────────────────────────────────────────────────

@router.get("/alertes", response_model=AlertesTempsReelResponse)
def get_alertes_temps_reel(
    niveaux: Optional[str] = Query(None, description="Niveaux de gravité, séparés par des virgules"),
    province: Optional[str] = Query(None),
    pays: Optional[str] = Query(None),
    jours: Optional[str] = Query(None, description="Fenêtre en jours (1-365)"),
    service: OverviewService = Depends(get_overview_service),
):
    """Active alerts of the last days, newest first."""
    return _compute("Alerts", service.realtime_alerts, niveaux, province, pays, jours)


# ── Charts ────────────────────────────────────────────────────────

@router.get("/repartition", response_model=RepartitionGeographiqueResponse)
def get_repartition_geographique(
    periode: Optional[str] = Query(None),
    service: OverviewService = Depends(get_overview_service),
):
    return _compute("Repartition", service.repartition, periode)


@router.get("/motifs-pie", response_model=MotifPieChartResponse)
def get_motifs_pie(
    periode: Optional[str] = Query(None),
    province: Optional[str] = Query(None),
    pays: Optional[str] = Query(None),
    service: OverviewService = Depends(get_overview_service),
):
    """Motive distribution as chart data points."""
    return _compute("Motives pie", service.motif_pie, periode, province, pays)


@router.get("/tendances", response_model=TendancesEvolutionResponse)
def get_tendances_evolution(
    periode: Optional[str] = Query(None, description="Période en mois, 24 par défaut"),
    province: Optional[str] = Query(None),
    pays: Optional[str] = Query(None),
    service: OverviewService = Depends(get_overview_service),
):
    return _compute("Trends", service.trends, periode, province, pays)


@router.get("/causes", response_model=CausesDetailleesResponse)
def get_causes_detaillees(
    periode: Optional[str] = Query(None),
    province: Optional[str] = Query(None),
    pays: Optional[str] = Query(None),
    service: OverviewService = Depends(get_overview_service),
):
    return _compute("Causes", service.causes, periode, province, pays)
