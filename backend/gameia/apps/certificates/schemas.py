from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import CertificateStatus


class CertificateTraining(BaseModel):
    id: str
    name: str
    icon: str
    color: str
    category: str
    difficulty: str

    class Config:
        from_attributes = True


class CertificateRead(BaseModel):
    id: str
    user_id: str
    training_id: str
    organization_id: Optional[str] = None
    certificate_number: str
    verification_code: str
    issued_at: datetime
    expires_at: Optional[datetime] = None
    status: CertificateStatus
    skills_validated: List[str] = Field(default_factory=list)
    final_score: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    insignia_id: Optional[str] = None
    training: Optional[CertificateTraining] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class CertificateIssue(BaseModel):
    training_id: str


class CertificateRevoke(BaseModel):
    reason: Optional[str] = None


class UserCertificateStats(BaseModel):
    total: int = 0
    active: int = 0
    expired: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)


class OrgCertificateStats(BaseModel):
    total: int = 0
    active: int = 0
    this_month: int = 0


class MyCertificates(BaseModel):
    certificates: List[CertificateRead]
    stats: UserCertificateStats


class OrgCertificates(BaseModel):
    certificates: List[CertificateRead]
    stats: OrgCertificateStats


class ValidatedCertificate(BaseModel):
    id: str
    certificate_number: str
    verification_code: str
    certificate_name: Optional[str] = None
    issued_at: datetime
    expires_at: Optional[datetime] = None
    final_score: Optional[float] = None


class CertificateHolder(BaseModel):
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class ValidatedTraining(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class CertificateValidation(BaseModel):
    valid: bool
    error: Optional[str] = None
    certificate: Optional[ValidatedCertificate] = None
    holder: Optional[CertificateHolder] = None
    training: Optional[ValidatedTraining] = None
    organization: Optional[str] = None
    skills_validated: List[str] = Field(default_factory=list)
