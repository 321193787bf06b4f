from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gameia.apps.certificates import models as certificate_models
from gameia.apps.certificates import pdf_renderer
from gameia.apps.certificates import services as certificate_services
from gameia.apps.training import models as training_models

NOW = datetime(2030, 5, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def completed_training(db_session, organization):
    training = training_models.Training(
        organization_id=organization.id,
        training_key="leadership",
        name="Leadership 101",
        category="leadership",
        certificate_enabled=True,
        certificate_validity_days=365,
        skill_ids=["skill-1", "skill-2"],
    )
    module = training_models.TrainingModule(module_key="m1", name="Intro")
    training.modules.append(module)
    db_session.add(training)
    db_session.commit()
    return training


def _complete(db, user, training, score=None):
    db.add(
        training_models.UserTrainingProgress(
            user_id=user.id,
            training_id=training.id,
            progress_percent=100,
            started_at=NOW - timedelta(days=2),
            completed_at=NOW - timedelta(days=1),
        )
    )
    db.add(
        training_models.ModuleProgress(
            user_id=user.id,
            module_id=training.modules[0].id,
            completed_at=NOW - timedelta(days=1),
            score=score,
        )
    )
    db.flush()


def test_issue_requires_completion_and_is_idempotent(db_session, organization, make_user, completed_training):
    learner = make_user(organization)

    with pytest.raises(certificate_services.CertificateError):
        certificate_services.issue_certificate(db_session, user=learner, training=completed_training, now=NOW)

    _complete(db_session, learner, completed_training, score=87)
    certificate = certificate_services.issue_certificate(
        db_session, user=learner, training=completed_training, now=NOW
    )
    again = certificate_services.issue_certificate(db_session, user=learner, training=completed_training)

    assert again.id == certificate.id
    assert certificate.status == certificate_models.CertificateStatus.ACTIVE
    assert certificate.certificate_number.startswith("CERT-2030-")
    assert len(certificate.verification_code) == 10
    assert certificate.expires_at == NOW + timedelta(days=365)
    assert certificate.final_score == 87
    assert certificate.skills_validated == ["skill-1", "skill-2"]


def test_disabled_training_has_no_certificate(db_session, organization, make_user, completed_training):
    learner = make_user(organization)
    _complete(db_session, learner, completed_training)
    completed_training.certificate_enabled = False

    with pytest.raises(certificate_services.CertificateError):
        certificate_services.issue_certificate(db_session, user=learner, training=completed_training)


def test_validation_lifecycle(db_session, organization, make_user, completed_training):
    learner = make_user(organization, full_name="Ana Souza")
    _complete(db_session, learner, completed_training)
    certificate = certificate_services.issue_certificate(
        db_session, user=learner, training=completed_training, now=NOW
    )
    db_session.commit()

    result = certificate_services.validate_certificate(
        db_session, code=certificate.verification_code.lower(), now=NOW
    )
    assert result["valid"] is True
    assert result["holder"]["name"] == "Ana Souza"
    assert result["training"]["name"] == "Leadership 101"
    assert result["organization"] == "Acme Corp"
    assert result["skills_validated"] == ["skill-1", "skill-2"]

    assert certificate_services.validate_certificate(db_session, code="NOPE")["valid"] is False

    later = NOW + timedelta(days=400)
    assert certificate_services.validate_certificate(
        db_session, code=certificate.verification_code, now=later
    ) == {"valid": False, "error": "Certificate expired"}
    assert certificate_services.refresh_expired(db_session, now=later) == 1
    assert certificate.status == certificate_models.CertificateStatus.EXPIRED

    certificate_services.revoke_certificate(db_session, certificate=certificate, reason="fraud")
    assert certificate_services.validate_certificate(db_session, code=certificate.verification_code)["error"] == (
        "Certificate revoked"
    )


def test_stats(db_session, organization, make_user, completed_training):
    learner = make_user(organization)
    _complete(db_session, learner, completed_training)
    certificate = certificate_services.issue_certificate(
        db_session, user=learner, training=completed_training, now=NOW
    )
    certificates = certificate_services.list_user_certificates(db_session, user_id=learner.id)

    assert certificate_services.user_stats(certificates) == {
        "total": 1,
        "active": 1,
        "expired": 0,
        "by_category": {"leadership": 1},
    }
    assert certificate_services.org_stats([certificate], now=NOW) == {"total": 1, "active": 1, "this_month": 1}
    assert certificate_services.org_stats([certificate], now=NOW + timedelta(days=40))["this_month"] == 0


def test_pdf_is_rendered_once(db_session, organization, make_user, completed_training, tmp_path):
    learner = make_user(organization)
    _complete(db_session, learner, completed_training, score=92)
    certificate = certificate_services.issue_certificate(
        db_session, user=learner, training=completed_training, now=NOW
    )

    path = pdf_renderer.create_certificate_pdf(certificate, "Acme Corp", output_dir=tmp_path)

    assert path.exists()
    assert path.read_bytes().startswith(b"%PDF")
    assert certificate.pdf_path == f"{certificate.certificate_number}.pdf"
    mtime = path.stat().st_mtime_ns
    assert pdf_renderer.create_certificate_pdf(certificate, output_dir=tmp_path) == path
    assert path.stat().st_mtime_ns == mtime
