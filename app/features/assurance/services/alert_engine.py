"""
Alert Engine

Turns a detected regression into at most one AssuranceAlert per
(domain, type) within the cooldown window. The cooldown lookup and the
insert run inside a short critical section keyed by (domain, type): a
process-local lock, plus a redis lock when redis is configured so that
concurrent workers agree.
"""
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.features.assurance.models.assurance import (
    AlertRule,
    AlertType,
    AssuranceAlert,
    AssuranceDomain,
    AssuranceScan,
)
from app.features.assurance.services.alert_rules import cooldown_minutes
from app.features.assurance.services.regression import RegressionResult
from app.platform.cache.redis import get_redis
from app.platform.config import settings
from app.platform.exceptions import InvalidStateError
from app.platform.logger import get_logger
from app.platform.utils.time import utcnow

logger = get_logger(__name__)

AUTO_RESOLVED_BY = "auto-recovery"
LOCK_WAIT_SECONDS = 5

_guard = threading.Lock()
_key_locks: Dict[Tuple[str, str], threading.Lock] = {}


def _local_lock(domain_id: str, alert_type: AlertType) -> threading.Lock:
    key = (domain_id, alert_type.value)
    with _guard:
        if key not in _key_locks:
            _key_locks[key] = threading.Lock()
        return _key_locks[key]


class AlertEngine:
    def __init__(self, db: Session, redis_client=None, auto_resolve: Optional[bool] = None):
        self.db = db
        self.redis = redis_client if redis_client is not None else get_redis()
        self.auto_resolve_enabled = settings.ALERT_AUTO_RESOLVE if auto_resolve is None else auto_resolve

    @contextmanager
    def _critical_section(self, domain_id: str, alert_type: AlertType):
        local = _local_lock(domain_id, alert_type)
        if not local.acquire(timeout=LOCK_WAIT_SECONDS):
            raise InvalidStateError(f"Alert lock busy for {domain_id}/{alert_type.value}")
        try:
            if self.redis is None:
                yield
                return
            remote = self.redis.lock(
                f"alert:{domain_id}:{alert_type.value}",
                timeout=LOCK_WAIT_SECONDS * 2,
                blocking_timeout=LOCK_WAIT_SECONDS,
            )
            if not remote.acquire():
                raise InvalidStateError(f"Alert lock busy for {domain_id}/{alert_type.value}")
            try:
                yield
            finally:
                remote.release()
        finally:
            local.release()

    def find_active(self, domain_id: str, alert_type: AlertType, window_minutes: int) -> Optional[AssuranceAlert]:
        """Unresolved alert of the same (domain, type) created inside the cooldown window."""
        since = utcnow() - timedelta(minutes=window_minutes)
        stmt = (
            select(AssuranceAlert)
            .where(
                AssuranceAlert.domain_id == domain_id,
                AssuranceAlert.type == alert_type,
                AssuranceAlert.resolved.is_(False),
                AssuranceAlert.created_at >= since,
            )
            .order_by(AssuranceAlert.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def create_alert(
        self,
        regression: RegressionResult,
        domain: AssuranceDomain,
        assurance_scan: Optional[AssuranceScan] = None,
        rule: Optional[AlertRule] = None,
    ) -> Optional[AssuranceAlert]:
        """
        Persist the regression as an alert.

        Returns None when nothing was detected or an unresolved alert of the
        same type is still inside its cooldown window.
        """
        if not regression.detected or regression.type is None:
            return None

        window = cooldown_minutes(rule)
        with self._critical_section(domain.id, regression.type):
            existing = self.find_active(domain.id, regression.type, window) if window > 0 else None
            if existing is not None:
                logger.info(
                    f"[{domain.id}] {regression.type.value} alert suppressed by cooldown "
                    f"(existing alert {existing.id}, window {window} min)"
                )
                return None

            now = utcnow()
            alert = AssuranceAlert(
                domain_id=domain.id,
                assurance_scan_id=assurance_scan.id if assurance_scan is not None else None,
                rule_id=rule.id if rule is not None else None,
                type=regression.type,
                severity=regression.severity,
                title=regression.title,
                message=regression.message,
                current_score=regression.current_score,
                previous_score=regression.previous_score,
                threshold=regression.threshold,
                resolved=False,
                created_at=now,
            )
            self.db.add(alert)
            if rule is not None:
                rule.total_alerts_sent = (rule.total_alerts_sent or 0) + 1
                rule.last_triggered_at = now
            self.db.commit()

        logger.info(f"[{domain.id}] Alert {alert.id} created: {alert.type.value} ({alert.severity.value})")
        return alert

    def resolve(self, alert: AssuranceAlert, resolved_by: str) -> AssuranceAlert:
        if alert.resolved:
            raise InvalidStateError(f"Alert {alert.id} is already resolved")
        alert.resolved = True
        alert.resolved_at = utcnow()
        alert.resolved_by = resolved_by
        self.db.commit()
        return alert

    def auto_resolve(self, domain: AssuranceDomain, assurance_scan: AssuranceScan, regression: RegressionResult) -> List[AssuranceAlert]:
        """
        With auto-resolution enabled, a healthy scan (no detection) whose score
        is back at or above an open score_drop alert's previous_score resolves
        that alert.
        """
        if not self.auto_resolve_enabled or regression.detected or assurance_scan.score is None:
            return []

        open_alerts = self.db.execute(
            select(AssuranceAlert).where(
                AssuranceAlert.domain_id == domain.id,
                AssuranceAlert.type == AlertType.score_drop,
                AssuranceAlert.resolved.is_(False),
            )
        ).scalars().all()

        resolved = []
        for alert in open_alerts:
            if alert.previous_score is not None and assurance_scan.score >= alert.previous_score:
                self.resolve(alert, AUTO_RESOLVED_BY)
                resolved.append(alert)
                logger.info(f"[{domain.id}] Alert {alert.id} auto-resolved at score {assurance_scan.score:g}")
        return resolved
