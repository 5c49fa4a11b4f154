from fastapi import APIRouter

from app.features.assurance.routes.alert_rules import router as alert_rules_router
from app.features.assurance.routes.alerts import router as alerts_router
from app.features.assurance.routes.domains import router as domains_router
from app.features.crawl.routes.crawls import router as crawls_router
from app.features.health.routes.health import router as health_router
from app.features.scan.routes.scans import router as scans_router
from app.features.scoring.routes.scoring import router as scoring_router
from app.features.sites.routes.sites import router as sites_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(health_router)
api_router.include_router(sites_router)
api_router.include_router(crawls_router)
api_router.include_router(scans_router)
api_router.include_router(scoring_router)

# Assurance feature routes
api_router.include_router(domains_router)
api_router.include_router(alerts_router)
api_router.include_router(alert_rules_router)
