from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional

from barcode import Code128
from barcode.writer import ImageWriter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from . import models

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[2]

OUTPUT_DIR = Path(os.getenv("CERTIFICATE_OUTPUT_DIR", str(BASE_DIR / "generated" / "certificates")))

PAGE_SIZE = landscape(A4)
ACCENT = colors.HexColor("#6366f1")


@dataclass(frozen=True)
class BarcodePlacement:
    x: float
    y: float
    width: float
    height: float


BARCODE_PLACEMENT = BarcodePlacement(x=PAGE_SIZE[0] - 250.0, y=40.0, width=200.0, height=40.0)


@dataclass(frozen=True)
class CertificateContext:
    holder_name: str
    training_name: str
    organization_name: Optional[str]
    certificate_number: str
    verification_code: str
    issued_on: str
    expires_on: Optional[str]
    final_score: Optional[float]


def _generate_barcode_reader(barcode_value: str) -> ImageReader:
    barcode = Code128(barcode_value, writer=ImageWriter())
    buffer = BytesIO()
    barcode.write(
        buffer,
        options={
            "module_width": 0.2,
            "module_height": 10.0,
            "quiet_zone": 1.0,
            "font_size": 0,
            "text_distance": 1.0,
        },
    )
    buffer.seek(0)
    return ImageReader(buffer)


def build_context(certificate: models.Certificate, organization_name: Optional[str] = None) -> CertificateContext:
    holder = certificate.user
    metadata = certificate.metadata_json or {}
    return CertificateContext(
        holder_name=(holder.full_name or holder.nickname or holder.email) if holder else "",
        training_name=metadata.get("training_name") or (certificate.training.name if certificate.training else ""),
        organization_name=organization_name,
        certificate_number=certificate.certificate_number,
        verification_code=certificate.verification_code,
        issued_on=certificate.issued_at.strftime("%d %b %Y"),
        expires_on=certificate.expires_at.strftime("%d %b %Y") if certificate.expires_at else None,
        final_score=certificate.final_score,
    )


def render_certificate(context: CertificateContext) -> bytes:
    """Draw a one-page landscape certificate and return the PDF bytes."""
    buffer = BytesIO()
    width, height = PAGE_SIZE
    pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
    pdf.setTitle(f"Certificate {context.certificate_number}")

    pdf.setStrokeColor(ACCENT)
    pdf.setLineWidth(4)
    pdf.rect(24, 24, width - 48, height - 48)

    pdf.setFillColor(ACCENT)
    pdf.setFont("Helvetica-Bold", 34)
    pdf.drawCentredString(width / 2, height - 120, "Certificate of Completion")

    pdf.setFillColor(colors.black)
    pdf.setFont("Helvetica", 14)
    pdf.drawCentredString(width / 2, height - 170, "This certifies that")
    pdf.setFont("Helvetica-Bold", 26)
    pdf.drawCentredString(width / 2, height - 210, context.holder_name)
    pdf.setFont("Helvetica", 14)
    pdf.drawCentredString(width / 2, height - 250, "has successfully completed the training")
    pdf.setFont("Helvetica-Bold", 20)
    pdf.drawCentredString(width / 2, height - 285, context.training_name)

    pdf.setFont("Helvetica", 11)
    lines = [f"Issued on {context.issued_on}"]
    if context.expires_on:
        lines.append(f"Valid until {context.expires_on}")
    if context.final_score is not None:
        lines.append(f"Final score: {context.final_score:.0f}")
    if context.organization_name:
        lines.append(context.organization_name)
    y = height - 330
    for line in lines:
        pdf.drawCentredString(width / 2, y, line)
        y -= 18

    pdf.setFont("Helvetica", 9)
    pdf.drawString(50, 60, f"Certificate no. {context.certificate_number}")
    pdf.drawString(50, 46, f"Verification code: {context.verification_code}")

    pdf.drawImage(
        _generate_barcode_reader(context.verification_code),
        BARCODE_PLACEMENT.x,
        BARCODE_PLACEMENT.y,
        width=BARCODE_PLACEMENT.width,
        height=BARCODE_PLACEMENT.height,
        preserveAspectRatio=True,
        mask="auto",
    )

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def create_certificate_pdf(
    certificate: models.Certificate,
    organization_name: Optional[str] = None,
    *,
    output_dir: Optional[Path] = None,
) -> Path:
    """
    Render the certificate PDF once and reuse the file on later downloads.
    Sets `certificate.pdf_path`; the caller commits.
    """
    output_dir = Path(output_dir or OUTPUT_DIR)
    if certificate.pdf_path:
        cached = output_dir / certificate.pdf_path
        if cached.exists():
            return cached

    output_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{certificate.certificate_number}.pdf"
    output_path = output_dir / filename
    output_path.write_bytes(render_certificate(build_context(certificate, organization_name)))
    certificate.pdf_path = filename
    logger.info(
        "Certificate PDF rendered",
        extra={"certificate_id": certificate.id, "path": str(output_path)},
    )
    return output_path
