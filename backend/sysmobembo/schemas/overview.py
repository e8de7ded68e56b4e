"""Pydantic schemas for the overview / dashboard indicators.

Field names keep the French wire format consumed by the dashboard UI.
"""

import enum
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel


# ── Enums ────────────────────────────────────────────────────────────────

class RiskLevel(str, enum.Enum):
    MEDIUM = "MOYEN"
    HIGH = "ÉLEVÉ"
    CRITICAL = "CRITIQUE"


class ReturnTrend(str, enum.Enum):
    DECLINING = "BAISSE"
    STABLE = "STABLE"
    RISING = "HAUSSE"


# ── Volume & localisation ────────────────────────────────────────────────

class RepartitionProvinceStats(BaseModel):
    province: str
    nombre_pdi: int
    pourcentage: float


class EvolutionTemporelleStats(BaseModel):
    periode: str
    nouveaux_deplaces: int
    retours: int
    total_cumule: int


class VolumeLocalisationIndicateurs(BaseModel):
    nombre_total_pdi: int
    nombre_total_migrants: int
    nombre_deplaces_internes: int
    personnes_retournees: int
    repartition_geographique: List[RepartitionProvinceStats]
    evolution_mensuelle: List[EvolutionTemporelleStats]


# ── Causes ───────────────────────────────────────────────────────────────

class CauseDetailStats(BaseModel):
    type_motif: str
    nombre_cas: int
    pourcentage: float


class CausesDeplacementsIndicateurs(BaseModel):
    pourcentage_conflits_armes: float
    pourcentage_catastrophes: float
    pourcentage_persecution: float
    pourcentage_violence_generalisee: float
    pourcentage_autres_causes: float
    details_causes: List[CauseDetailStats]


# ── Vulnerability & needs ────────────────────────────────────────────────

class ProfilDemographiqueStats(BaseModel):
    pourcentage_femmes: float
    pourcentage_enfants: float
    pourcentage_ages: float
    age_moyen: float


class AccesServicesStats(BaseModel):
    acces_eau: float
    acces_sante: float
    acces_education: float
    acces_logement: float


class VulnerabiliteBesoinsIndicateurs(BaseModel):
    profil_demographique: ProfilDemographiqueStats
    acces_services_base: AccesServicesStats
    taux_occupation_sites: float
    deplaces_hors_sites: int


# ── Dynamics & alerts ────────────────────────────────────────────────────

class ZoneRisqueStats(BaseModel):
    zone: str
    niveau_risque: RiskLevel
    type_menace: str
    population_risque: int  # alert count x multiplier, rough proxy


class TendanceRetourStats(BaseModel):
    zone_origine: str
    zone_retour: str
    nombre_retours: int
    tendance_evolution: ReturnTrend


class AlertePrecoceStats(BaseModel):
    zone: str
    type_alerte: str
    niveau_gravite: str
    date_detection: datetime
    description: str


class DynamiquesAlerteIndicateurs(BaseModel):
    zones_haut_risque: List[ZoneRisqueStats]
    tendances_retour: List[TendanceRetourStats]
    alertes_precoces: List[AlertePrecoceStats]
    mouvements_massifs_recent: int


# ── Responses ────────────────────────────────────────────────────────────

class IndicateursDeplacementResponse(BaseModel):
    volume_localisation: VolumeLocalisationIndicateurs
    causes_deplacements: CausesDeplacementsIndicateurs
    vulnerabilite_besoins: VulnerabiliteBesoinsIndicateurs
    dynamiques_alerte: DynamiquesAlerteIndicateurs
    date_generation: datetime
    periode_analyse: str


class AlertesTempsReelResponse(BaseModel):
    alertes_actives: List[AlertePrecoceStats]
    nombre_total: int
    date_mise_a_jour: datetime


class RepartitionGeographiqueResponse(BaseModel):
    repartition_provinces: List[RepartitionProvinceStats]
    date_mise_a_jour: datetime
    periode_analyse: str


class ChartDataPoint(BaseModel):
    name: str
    value: float
    extra: Optional[Any] = None


class MotifPieChartResponse(BaseModel):
    data: List[ChartDataPoint]
    total: int
    date_mise_a_jour: datetime
    periode_analyse: str


class TendancesEvolutionResponse(BaseModel):
    evolution_mensuelle: List[EvolutionTemporelleStats]
    periode_analyse: str
    province: str
    date_generation: datetime


class CausesDetailleesResponse(BaseModel):
    causes_deplacements: CausesDeplacementsIndicateurs
    periode_analyse: str
    province: str
    date_generation: datetime
