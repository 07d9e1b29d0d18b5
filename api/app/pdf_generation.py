# Renders a populated input map onto the template's base PDF using pypdf + reportlab.
# Field geometry follows the pdfme convention: millimetres, origin at the top-left.

import binascii
import datetime
import json
import logging
from io import BytesIO
from typing import Any, Dict, Optional

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .field_assignment import page_schemas
from .utils import b64png_to_bytes, sha256_bytes

logger = logging.getLogger(__name__)

IMAGE_FIELD_TYPES = ("signature", "image")
DEFAULT_FONT_SIZE = 10


def _overlay_page(width, height, draw_ops):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    for op in draw_ops:
        if op["type"] == "text":
            c.setFont("Helvetica", op.get("size", DEFAULT_FONT_SIZE))
            c.drawString(op["x"], op["y"], op["text"])
        elif op["type"] == "image":
            c.drawImage(
                ImageReader(BytesIO(op["png"])),
                op["x"], op["y"], width=op["w"], height=op["h"],
                mask="auto", preserveAspectRatio=True,
            )
    c.showPage()
    c.save()
    return buf.getvalue()


def _append_certificate(writer: PdfWriter, audit: dict):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setFont("Helvetica-Bold", 14)
    c.drawString(72, 750, "Certificate of Completion")
    c.setFont("Helvetica", 10)
    y = 720
    for k, v in audit.items():
        line = f"{k}: {v}"
        c.drawString(72, y, line[:95])
        y -= 14
        if y < 72:
            c.showPage(); y = 750
    c.showPage(); c.save()
    buf.seek(0)
    writer.append_pages_from_reader(PdfReader(buf))


def _draw_op(field: dict, value: str, page_height: float) -> Optional[dict]:
    pos = field.get("position") or {}
    x = float(pos.get("x", 0)) * mm
    top = float(pos.get("y", 0)) * mm
    w = float(field.get("width", 0)) * mm
    h = float(field.get("height", 0)) * mm
    bottom = page_height - top - h
    if field.get("type") in IMAGE_FIELD_TYPES:
        try:
            png = b64png_to_bytes(value)
            ImageReader(BytesIO(png)).getSize()
        except (binascii.Error, ValueError, OSError):
            logger.warning("field %s does not hold a base64 image, left blank", field.get("name"))
            return None
        return {"type": "image", "x": x, "y": bottom, "w": w or 180.0, "h": h or 80.0, "png": png}
    size = float(field.get("fontSize") or DEFAULT_FONT_SIZE)
    # baseline sits one font size below the top edge of the box
    return {"type": "text", "x": x, "y": page_height - top - size, "text": str(value), "size": size}


def render_signed_pdf(base_pdf: bytes, schemas: Any, inputs: Dict[str, str], audit: dict):
    """Stamp ``inputs`` onto ``base_pdf`` and append a completion certificate.

    ``schemas`` is the template value: page lists, or a flat field list that
    lands on page 0. Fields missing from ``inputs`` or with an empty value are
    left blank. Returns (pdf bytes, audit json, sha256).
    """
    reader = PdfReader(BytesIO(base_pdf))
    writer = PdfWriter()
    num_pages = len(reader.pages)
    for page in reader.pages:
        writer.add_page(page)

    draw_map = {}  # page_index -> [ops]
    for page_idx, fields in enumerate(page_schemas(schemas)):
        p = max(0, min(num_pages - 1, page_idx))
        height = float(reader.pages[p].mediabox.height)
        for field in fields:
            value = inputs.get(field.get("name"))
            if not value:
                continue
            op = _draw_op(field, value, height)
            if op:
                draw_map.setdefault(p, []).append(op)

    for pidx, ops in draw_map.items():
        page = reader.pages[pidx]
        overlay_pdf = _overlay_page(float(page.mediabox.width), float(page.mediabox.height), ops)
        writer.pages[pidx].merge_page(PdfReader(BytesIO(overlay_pdf)).pages[0])

    audit = {
        **audit,
        "sha256_original": sha256_bytes(base_pdf),
        "sealed_at": datetime.datetime.utcnow().isoformat() + "Z",
    }
    _append_certificate(writer, audit)

    out = BytesIO()
    writer.write(out)
    final_bytes = out.getvalue()
    sha_final = sha256_bytes(final_bytes)
    audit_json = json.dumps({**audit, "sha256_final": sha_final}, default=str)
    return final_bytes, audit_json, sha_final
