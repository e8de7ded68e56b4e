from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from sysmobembo.core.config import settings
from sysmobembo.core.worker_pool import start_pool, stop_pool, get_pool_status
from sysmobembo.core.rate_limit import setup_rate_limiting
from sysmobembo.core.request_timing import RequestTimingMiddleware
from sysmobembo.api import overview

# ─── Logging ───
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(name)-20s | %(levelname)-7s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sysmobembo.main")


# ─── Lifecycle ───

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("SysMobembo API starting up…")
    start_pool()
    yield
    logger.info("SysMobembo API shutting down…")
    stop_pool()


app = FastAPI(
    title="SysMobembo API",
    description="Indicateurs de déplacement : tableau de bord de suivi des migrations",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestTimingMiddleware)

# Register routers
app.include_router(overview.router)

# Rate limiting
setup_rate_limiting(app)


@app.get("/")
def root():
    return {
        "name": "SysMobembo API",
        "version": "1.0.0",
        "description": "Indicateurs de déplacement : tableau de bord de suivi des migrations",
        "endpoints": {
            "indicateurs": "/api/overview/indicateurs",
            "alertes": "/api/overview/alertes",
            "repartition": "/api/overview/repartition",
            "motifs_pie": "/api/overview/motifs-pie",
            "province": "/api/overview/province/{province}",
            "tendances": "/api/overview/tendances",
            "causes": "/api/overview/causes",
            "docs": "/docs",
        },
    }


@app.get("/health")
def health():
    return {"status": "healthy", "worker_pool": get_pool_status()}
