# backend/gameia/apps/certificates/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class Certificate(Base):
    """
    Completion certificate of a training. `verification_code` is the public
    handle printed (and barcoded) on the PDF.
    """

    __tablename__ = "training_certificates"
    __table_args__ = (
        UniqueConstraint("user_id", "training_id", name="uq_certificate_user_training"),
        Index("ix_training_certificates_org_issued", "organization_id", "issued_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    training_id = Column(String(36), ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )

    certificate_number = Column(String(32), nullable=False, unique=True)
    verification_code = Column(String(16), nullable=False, unique=True, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(CertificateStatus, name="certificate_status_enum", native_enum=False),
        nullable=False,
        default=CertificateStatus.ACTIVE,
    )
    skills_validated = Column(JSON, nullable=False, default=list)
    final_score = Column(Float, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    insignia_id = Column(String(36), ForeignKey("insignias.id", ondelete="SET NULL"), nullable=True)

    # Rendered file, relative to CERTIFICATE_OUTPUT_DIR
    pdf_path = Column(String(512), nullable=True)

    training = relationship("Training", lazy="joined")
    user = relationship("User", lazy="joined")

    def __repr__(self) -> str:
        return f"<Certificate id={self.id} number={self.certificate_number} status={self.status}>"
