"""
Alert notification dispatch.

Delivery is best effort: a failing channel is logged and never rolls back the
alert. notified_at is set once at least one channel delivered.
"""
from typing import List, Optional

import httpx
from sqlalchemy.orm import Session

from app.features.assurance.models.assurance import AlertRule, AlertSeverity, AssuranceAlert, AssuranceDomain
from app.features.assurance.services.alert_rules import severity_notifies
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.services.email import EmailDeliveryError, env, send_email
from app.platform.utils.time import utcnow

logger = get_logger(__name__)

SEVERITY_COLORS = {
    AlertSeverity.low: "#3ebd93",
    AlertSeverity.moderate: "#f0b429",
    AlertSeverity.high: "#f35627",
    AlertSeverity.critical: "#d64545",
}


def alert_payload(alert: AssuranceAlert, domain: AssuranceDomain) -> dict:
    return {
        "event": "assurance.alert.created",
        "alert_id": alert.id,
        "domain_id": domain.id,
        "domain": domain.domain,
        "type": alert.type.value,
        "severity": alert.severity.value,
        "title": alert.title,
        "message": alert.message,
        "current_score": alert.current_score,
        "previous_score": alert.previous_score,
        "threshold": alert.threshold,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
    }


def render_alert_email(alert: AssuranceAlert, domain: AssuranceDomain) -> str:
    template = env.get_template("alert_email.html")
    return template.render(
        title=alert.title,
        message=alert.message,
        severity=alert.severity.value,
        severity_color=SEVERITY_COLORS[alert.severity],
        domain=domain.domain,
        current_score=alert.current_score,
        previous_score=alert.previous_score,
        threshold=alert.threshold,
        dashboard_url=f"{settings.DASHBOARD_URL}/assurance/domains/{domain.id}/alerts/{alert.id}",
    )


class NotificationDispatcher:
    def __init__(self, db: Session, client: Optional[httpx.Client] = None, email_sender=send_email):
        self.db = db
        self.client = client
        self.email_sender = email_sender

    def _recipients(self, domain: AssuranceDomain, rule: Optional[AlertRule]) -> List[str]:
        if rule is not None and rule.recipients:
            return list(rule.recipients)
        return list(domain.email_recipients or [])

    def _webhook_url(self, domain: AssuranceDomain, rule: Optional[AlertRule]) -> Optional[str]:
        if rule is not None:
            if not rule.notify_webhook:
                return None
            return rule.webhook_url or domain.webhook_url or settings.ALERT_WEBHOOK_URL
        return domain.webhook_url or settings.ALERT_WEBHOOK_URL

    def send_email_alert(self, alert: AssuranceAlert, domain: AssuranceDomain, recipients: List[str]) -> bool:
        subject = f"[{alert.severity.value.upper()}] {alert.title} - {domain.domain}"
        body = render_alert_email(alert, domain)
        delivered = False
        for recipient in recipients:
            try:
                self.email_sender(recipient, subject, body)
                delivered = True
            except EmailDeliveryError as e:
                logger.error(f"[{domain.id}] Alert email to {recipient} failed: {e}")
        return delivered

    def send_webhook(self, alert: AssuranceAlert, domain: AssuranceDomain, url: str) -> bool:
        try:
            if self.client is not None:
                response = self.client.post(url, json=alert_payload(alert, domain))
            else:
                with httpx.Client(timeout=settings.ALERT_WEBHOOK_TIMEOUT) as client:
                    response = client.post(url, json=alert_payload(alert, domain))
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"[{domain.id}] Alert webhook to {url} failed: {e}")
            return False

    def dispatch(self, alert: AssuranceAlert, domain: AssuranceDomain, rule: Optional[AlertRule] = None) -> bool:
        if not severity_notifies(rule, alert.severity):
            logger.info(f"[{domain.id}] Alert {alert.id} ({alert.severity.value}) below the rule's notify levels")
            return False

        delivered = False
        if rule is None or rule.notify_email:
            recipients = self._recipients(domain, rule)
            if recipients:
                delivered = self.send_email_alert(alert, domain, recipients) or delivered

        webhook_url = self._webhook_url(domain, rule)
        if webhook_url:
            delivered = self.send_webhook(alert, domain, webhook_url) or delivered

        if delivered:
            alert.notified_at = utcnow()
            self.db.commit()
        return delivered
