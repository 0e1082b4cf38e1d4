"""Entry agreement PDFs.

Builds the signed agreement with reportlab PLATYPUS into an in-memory
buffer. Only the SHA-256 of the bytes is persisted on the check-in block;
the signature record keeps the signature image and the text snapshot.
"""

import base64
import binascii
import datetime as dt
import hashlib
from dataclasses import dataclass
from io import BytesIO

from PIL import Image as PILImage
from PIL import UnidentifiedImageError
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from checkin_core.models import ErrorCode, Language, ValidationError
from checkin_core.utils.logging import get_logger

logger = get_logger(__name__)

AGREEMENT_VERSION = "2024-01"
MANUAL_SIGNATURE_MARKER = "Manual signature override"
MIN_SIGNATURE_LENGTH = 16

AGREEMENT_TITLES = {
    Language.EN: "Club Entry and Liability Waiver",
    Language.ES: "Acuerdo de ingreso y exención de responsabilidad",
}

AGREEMENT_SECTIONS: dict[Language, list[tuple[str, str]]] = {
    Language.EN: [
        (
            "Assumption of risk",
            "Entering and using the premises carries inherent risks, including slips, "
            "falls and contact with cleaning products. The guest accepts these risks.",
        ),
        (
            "Release of liability",
            "To the extent permitted by law, the guest releases the Club, its owners and "
            "staff from claims arising out of the guest's entry or presence on the premises.",
        ),
        (
            "Conduct",
            "The guest follows posted rules and staff instructions. The Club may refuse "
            "entry or remove any guest; removal for a rule violation is without refund.",
        ),
        (
            "Personal property",
            "The Club is not responsible for lost, stolen or damaged property left in "
            "lockers, rooms or common areas.",
        ),
        (
            "Acknowledgment",
            "I have read this agreement, understand it and agree to be bound by it.",
        ),
    ],
    Language.ES: [
        (
            "Asunción de riesgos",
            "Ingresar y utilizar las instalaciones implica riesgos inherentes, incluidos "
            "resbalones, caídas y contacto con productos de limpieza. El invitado los acepta.",
        ),
        (
            "Liberación de responsabilidad",
            "En la medida permitida por la ley, el invitado libera al Club, a sus "
            "propietarios y a su personal de reclamos derivados de su ingreso o permanencia.",
        ),
        (
            "Conducta",
            "El invitado cumple las reglas publicadas y las instrucciones del personal. El "
            "Club puede negar el acceso o retirar a cualquier invitado sin reembolso.",
        ),
        (
            "Bienes personales",
            "El Club no se hace responsable por bienes perdidos, robados o dañados dejados "
            "en casilleros, cuartos o áreas comunes.",
        ),
        (
            "Reconocimiento",
            "He leído este acuerdo, lo entiendo y acepto sus términos.",
        ),
    ],
}


@dataclass
class AgreementDocument:
    """A generated agreement and the text it was generated from."""

    pdf: bytes
    sha256: str
    title: str
    text: str
    version: str = AGREEMENT_VERSION


def agreement_text(language: Language | None) -> tuple[str, str]:
    """Title and plain-text body for the customer's language (EN default)."""
    lang = language if language in AGREEMENT_SECTIONS else Language.EN
    body = "\n\n".join(f"{heading}\n{text}" for heading, text in AGREEMENT_SECTIONS[lang])
    return AGREEMENT_TITLES[lang], body


def decode_signature(signature: str | None) -> bytes:
    """Decode a PNG signature given as a data URL or bare base64.

    Raises:
        ValidationError: Missing, too short or not base64
    """
    payload = (signature or "").strip()
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
    if len(payload) < MIN_SIGNATURE_LENGTH:
        raise ValidationError(ErrorCode.SIGNATURE_INVALID, "Signature payload is required")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(
            ErrorCode.SIGNATURE_INVALID,
            "Invalid signature image (expected PNG data URL or base64)",
        ) from e


def check_signature_image(signature_png: bytes) -> None:
    """Reject signatures that are not a readable PNG image.

    Raises:
        ValidationError: AGREEMENT_FAILED
    """
    try:
        with PILImage.open(BytesIO(signature_png)) as image:
            image.verify()
            image_format = image.format
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError(
            ErrorCode.AGREEMENT_FAILED,
            "Invalid signature image (expected PNG data URL or base64)",
        ) from e
    if image_format != "PNG":
        raise ValidationError(
            ErrorCode.AGREEMENT_FAILED, "Invalid signature image (expected PNG data URL or base64)"
        )


def _styles() -> dict[str, ParagraphStyle]:
    sample = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("AgreementTitle", parent=sample["Title"], fontSize=16),
        "heading": ParagraphStyle(
            "AgreementHeading", parent=sample["Heading3"], spaceBefore=6, spaceAfter=2
        ),
        "body": ParagraphStyle("AgreementBody", parent=sample["BodyText"], fontSize=9, leading=12),
        "marker": ParagraphStyle(
            "ManualMarker", parent=sample["BodyText"], fontName="Helvetica-Bold", fontSize=12
        ),
    }


def generate_agreement_pdf(
    customer_name: str,
    membership_number: str | None,
    signed_at: dt.datetime,
    language: Language | None = None,
    signature_png: bytes | None = None,
) -> AgreementDocument:
    """Render the agreement with either the signature image or the manual marker.

    Raises:
        ValidationError: AGREEMENT_FAILED when the document cannot be built
            (e.g. the signature is not a readable image)
    """
    title, text = agreement_text(language)
    lang = language if language in AGREEMENT_SECTIONS else Language.EN
    styles = _styles()

    story: list = [Paragraph(title, styles["title"]), Spacer(1, 4 * mm)]
    for heading, paragraph in AGREEMENT_SECTIONS[lang]:
        story.append(Paragraph(heading, styles["heading"]))
        story.append(Paragraph(paragraph, styles["body"]))
    story.append(Spacer(1, 8 * mm))

    details = Table(
        [
            ["Customer", customer_name],
            ["Membership", membership_number or "N/A"],
            ["Signed at", signed_at.isoformat()],
            ["Version", AGREEMENT_VERSION],
        ],
        colWidths=[35 * mm, 120 * mm],
    )
    details.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
            ]
        )
    )
    story.append(details)
    story.append(Spacer(1, 6 * mm))

    if signature_png is None:
        story.append(Paragraph(MANUAL_SIGNATURE_MARKER, styles["marker"]))
    else:
        check_signature_image(signature_png)
        story.append(Image(BytesIO(signature_png), width=60 * mm, height=20 * mm))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        title=title,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=16 * mm,
        bottomMargin=16 * mm,
    )
    try:
        doc.build(story)
    except Exception as e:
        logger.warning("Failed to generate agreement PDF: %s", e)
        raise ValidationError(
            ErrorCode.AGREEMENT_FAILED,
            "Invalid signature image (expected PNG data URL or base64)"
            if signature_png is not None
            else None,
        ) from e

    pdf = buffer.getvalue()
    return AgreementDocument(
        pdf=pdf, sha256=hashlib.sha256(pdf).hexdigest(), title=title, text=text
    )
