"""
Certificate issuance, public validation and statistics.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.audit import services as audit_services
from gameia.apps.notifications import models as notification_models
from gameia.apps.notifications import service as notification_service
from gameia.apps.training import models as training_models
from gameia.utils.identifiers import ensure_utc, generate_code

from . import models

logger = logging.getLogger(__name__)

VERIFICATION_CODE_LENGTH = 10
DEFAULT_CATEGORY = "other"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateError(ValueError):
    pass


class CertificateNotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# ISSUANCE
# ---------------------------------------------------------------------------


def _unique_code(db: Session, column, length: int, prefix: str = "") -> str:
    while True:
        code = generate_code(length, prefix)
        if not db.query(models.Certificate.id).filter(column == code).first():
            return code


def _final_score(db: Session, *, user_id: str, training: training_models.Training) -> Optional[float]:
    module_ids = [m.id for m in training.modules]
    if not module_ids:
        return None
    scores = [
        row.score
        for row in db.query(training_models.ModuleProgress)
        .filter(
            training_models.ModuleProgress.user_id == user_id,
            training_models.ModuleProgress.module_id.in_(module_ids),
            training_models.ModuleProgress.score.isnot(None),
        )
        .all()
    ]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)


def get_user_certificate(db: Session, *, user_id: str, training_id: str) -> Optional[models.Certificate]:
    return (
        db.query(models.Certificate)
        .filter(
            models.Certificate.user_id == user_id,
            models.Certificate.training_id == training_id,
        )
        .first()
    )


def issue_certificate(
    db: Session,
    *,
    user: account_models.User,
    training: training_models.Training,
    now: Optional[datetime] = None,
) -> models.Certificate:
    """
    Issue the certificate of a completed training. Idempotent per user and
    training: an existing certificate is returned as is.

    Raises CertificateError when certificates are disabled for the training
    or the training is not completed.
    """
    existing = get_user_certificate(db, user_id=user.id, training_id=training.id)
    if existing is not None:
        return existing

    if not training.certificate_enabled:
        raise CertificateError("Certificates are not enabled for this training")
    progress = (
        db.query(training_models.UserTrainingProgress)
        .filter(
            training_models.UserTrainingProgress.user_id == user.id,
            training_models.UserTrainingProgress.training_id == training.id,
        )
        .first()
    )
    if progress is None or progress.completed_at is None:
        raise CertificateError("Training not completed")

    now = now or _utcnow()
    expires_at = None
    if training.certificate_validity_days:
        expires_at = now + timedelta(days=training.certificate_validity_days)

    certificate = models.Certificate(
        user_id=user.id,
        training_id=training.id,
        organization_id=user.organization_id,
        certificate_number=_unique_code(db, models.Certificate.certificate_number, 8, prefix=f"CERT-{now:%Y}"),
        verification_code=_unique_code(db, models.Certificate.verification_code, VERIFICATION_CODE_LENGTH),
        issued_at=now,
        expires_at=expires_at,
        status=models.CertificateStatus.ACTIVE,
        skills_validated=list(training.skill_ids or []),
        final_score=_final_score(db, user_id=user.id, training=training),
        insignia_id=training.insignia_reward_id,
        metadata_json={
            "certificate_name": f"Certificate - {training.name}",
            "certificate_type": "training",
            "training_name": training.name,
        },
    )
    db.add(certificate)
    db.flush()

    notification_service.create_notification(
        db,
        user_id=user.id,
        organization_id=user.organization_id,
        title="🎓 Certificate issued",
        message=f'Your certificate for "{training.name}" is ready. Code: {certificate.verification_code}',
        type=notification_models.NotificationType.ACHIEVEMENT,
        link=f"/app/certificates/{certificate.id}",
        metadata={"certificate_id": certificate.id, "training_id": training.id},
    )
    audit_services.log_event(
        db,
        organization_id=user.organization_id,
        actor_user_id=user.id,
        entity_type="certificate",
        entity_id=certificate.id,
        action="ISSUED",
        after={"training_id": training.id, "certificate_number": certificate.certificate_number},
    )
    logger.info(
        "Certificate issued",
        extra={"user_id": user.id, "training_id": training.id, "certificate_id": certificate.id},
    )
    return certificate


def revoke_certificate(
    db: Session,
    *,
    certificate: models.Certificate,
    actor_user_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> models.Certificate:
    before = certificate.status.value
    certificate.status = models.CertificateStatus.REVOKED
    certificate.metadata_json = {**(certificate.metadata_json or {}), "revoked_reason": reason}
    db.add(certificate)
    db.flush()
    audit_services.log_event(
        db,
        organization_id=certificate.organization_id,
        actor_user_id=actor_user_id,
        entity_type="certificate",
        entity_id=certificate.id,
        action="REVOKED",
        before={"status": before},
        after={"status": certificate.status.value, "reason": reason},
        critical=True,
    )
    return certificate


def refresh_expired(db: Session, *, now: Optional[datetime] = None, user_id: Optional[str] = None) -> int:
    """Flip active certificates past their expiry date to `expired`."""
    now = now or _utcnow()
    query = db.query(models.Certificate).filter(
        models.Certificate.status == models.CertificateStatus.ACTIVE,
        models.Certificate.expires_at.isnot(None),
    )
    if user_id:
        query = query.filter(models.Certificate.user_id == user_id)
    expired = 0
    for certificate in query.all():
        if ensure_utc(certificate.expires_at) < now:
            certificate.status = models.CertificateStatus.EXPIRED
            db.add(certificate)
            expired += 1
    if expired:
        db.flush()
        logger.info("Certificates expired", extra={"count": expired})
    return expired


# ---------------------------------------------------------------------------
# LOOKUPS / VALIDATION
# ---------------------------------------------------------------------------


def get_certificate(db: Session, *, certificate_id: str) -> models.Certificate:
    certificate = db.get(models.Certificate, certificate_id)
    if certificate is None:
        raise CertificateNotFound(certificate_id)
    return certificate


def organization_name(db: Session, organization_id: Optional[str]) -> Optional[str]:
    if not organization_id:
        return None
    org = db.get(account_models.Organization, organization_id)
    return org.name if org else None


def validate_certificate(db: Session, *, code: str, now: Optional[datetime] = None) -> dict:
    """Public lookup by verification code."""
    certificate = (
        db.query(models.Certificate)
        .filter(models.Certificate.verification_code == (code or "").strip().upper())
        .first()
    )
    if certificate is None:
        return {"valid": False, "error": "Certificate not found"}

    now = now or _utcnow()
    if certificate.status == models.CertificateStatus.REVOKED:
        return {"valid": False, "error": "Certificate revoked"}
    expires_at = ensure_utc(certificate.expires_at)
    if certificate.status == models.CertificateStatus.EXPIRED or (expires_at and expires_at < now):
        return {"valid": False, "error": "Certificate expired"}

    holder = certificate.user
    training = certificate.training
    metadata = certificate.metadata_json or {}
    return {
        "valid": True,
        "certificate": {
            "id": certificate.id,
            "certificate_number": certificate.certificate_number,
            "verification_code": certificate.verification_code,
            "certificate_name": metadata.get("certificate_name"),
            "issued_at": certificate.issued_at,
            "expires_at": certificate.expires_at,
            "final_score": certificate.final_score,
        },
        "holder": {
            "name": holder.nickname or holder.full_name if holder else None,
            "avatar_url": holder.avatar_url if holder else None,
        },
        "training": {
            "name": training.name if training else metadata.get("training_name"),
            "description": training.description if training else None,
        },
        "organization": organization_name(db, certificate.organization_id),
        "skills_validated": list(certificate.skills_validated or []),
    }


def list_user_certificates(db: Session, *, user_id: str) -> List[models.Certificate]:
    return (
        db.query(models.Certificate)
        .filter(models.Certificate.user_id == user_id)
        .order_by(models.Certificate.issued_at.desc())
        .all()
    )


def list_org_certificates(db: Session, *, organization_id: str) -> List[models.Certificate]:
    return (
        db.query(models.Certificate)
        .filter(models.Certificate.organization_id == organization_id)
        .order_by(models.Certificate.issued_at.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# STATS
# ---------------------------------------------------------------------------


def user_stats(certificates: List[models.Certificate]) -> dict:
    by_category: Dict[str, int] = {}
    for certificate in certificates:
        category = (certificate.training.category if certificate.training else None) or DEFAULT_CATEGORY
        by_category[category] = by_category.get(category, 0) + 1
    return {
        "total": len(certificates),
        "active": sum(1 for c in certificates if c.status == models.CertificateStatus.ACTIVE),
        "expired": sum(1 for c in certificates if c.status == models.CertificateStatus.EXPIRED),
        "by_category": by_category,
    }


def org_stats(certificates: List[models.Certificate], *, now: Optional[datetime] = None) -> dict:
    now = now or _utcnow()
    this_month = 0
    for certificate in certificates:
        issued = ensure_utc(certificate.issued_at)
        if issued.year == now.year and issued.month == now.month:
            this_month += 1
    return {
        "total": len(certificates),
        "active": sum(1 for c in certificates if c.status == models.CertificateStatus.ACTIVE),
        "this_month": this_month,
    }
