"""
Import every model once so SQLAlchemy mappers resolve string relationships
(workers, alembic and tests import this module instead of individual models).
"""
from app.platform.db.base import Base  # noqa: F401
from app.features.sites.models.site import Site  # noqa: F401
from app.features.crawl.models.crawl import Crawl, CrawlUrl  # noqa: F401
from app.features.scan.models.scan import Scan, ScanBatch  # noqa: F401
from app.features.assurance.models.assurance import (  # noqa: F401
    AlertRule,
    AssuranceAlert,
    AssuranceDomain,
    AssuranceScan,
)
