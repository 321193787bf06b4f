from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.apps.training import services as training_services
from gameia.database import get_db, get_read_db
from gameia.security import get_current_active_user, get_membership, require_org_roles

from . import models, pdf_renderer, schemas, services

router = APIRouter(prefix="/certificates", tags=["certificates"])

MANAGER_ROLES = ("OWNER", "ADMIN", "MANAGER")


def _certificate_for(db: Session, certificate_id: str, user: account_models.User) -> models.Certificate:
    try:
        certificate = services.get_certificate(db, certificate_id=certificate_id)
    except services.CertificateNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found")
    if certificate.user_id == user.id or user.is_superuser:
        return certificate
    if certificate.organization_id and certificate.organization_id == user.organization_id:
        membership = get_membership(db, organization_id=user.organization_id, user_id=user.id)
        if membership is not None and membership.role in account_models.MANAGER_ROLES:
            return certificate
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found")


@router.get("/me", response_model=schemas.MyCertificates)
def my_certificates(
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    if services.refresh_expired(db, user_id=current_user.id):
        db.commit()
    certificates = services.list_user_certificates(db, user_id=current_user.id)
    return schemas.MyCertificates(certificates=certificates, stats=services.user_stats(certificates))


@router.post("/issue", response_model=schemas.CertificateRead, status_code=status.HTTP_201_CREATED)
def issue_certificate(
    payload: schemas.CertificateIssue,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        training = training_services.get_training(
            db, training_id=payload.training_id, organization_id=current_user.organization_id
        )
    except training_services.TrainingNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Training not found")
    try:
        certificate = services.issue_certificate(db, user=current_user, training=training)
    except services.CertificateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()
    return certificate


@router.get(
    "/validate/{code}",
    response_model=schemas.CertificateValidation,
    summary="Public verification of a certificate code",
)
def validate_certificate(code: str, db: Session = Depends(get_read_db)):
    return services.validate_certificate(db, code=code)


@router.get("/organization", response_model=schemas.OrgCertificates)
def organization_certificates(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_org_roles(*MANAGER_ROLES)),
):
    certificates = services.list_org_certificates(db, organization_id=current_user.organization_id)
    return schemas.OrgCertificates(certificates=certificates, stats=services.org_stats(certificates))


@router.get("/{certificate_id}", response_model=schemas.CertificateRead)
def get_certificate(
    certificate_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return _certificate_for(db, certificate_id, current_user)


@router.get("/{certificate_id}/download", response_class=FileResponse)
def download_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    certificate = _certificate_for(db, certificate_id, current_user)
    if certificate.status == models.CertificateStatus.REVOKED:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Certificate revoked")
    path = pdf_renderer.create_certificate_pdf(
        certificate,
        services.organization_name(db, certificate.organization_id),
    )
    db.commit()
    return FileResponse(path, media_type="application/pdf", filename=path.name)


@router.post("/{certificate_id}/revoke", response_model=schemas.CertificateRead)
def revoke_certificate(
    certificate_id: str,
    payload: schemas.CertificateRevoke,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_org_roles("OWNER", "ADMIN")),
):
    certificate = _certificate_for(db, certificate_id, current_user)
    services.revoke_certificate(
        db, certificate=certificate, actor_user_id=current_user.id, reason=payload.reason
    )
    db.commit()
    return certificate
