"""Final PDF generation for a fully signed request.

Shared by the API (inline mode) and the Celery worker (queue mode).
"""
import logging

from minio.error import S3Error
from pypdf.errors import PyPdfError
from sqlmodel import Session, select

from .events import append_event
from .field_assignment import EmptySchemaError, flatten_schemas, populate_inputs
from .models import Document, FinalArtifact, Signer, SigningRequest
from .notifications import notify_completed
from .pdf_generation import render_signed_pdf
from .storage import get_bytes, put_bytes
from .templates import TemplateError, load_template
from .utils import sa_to_dict
from .workflow import all_signed

logger = logging.getLogger(__name__)


class FinalizationError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def generate_final_pdf(session: Session, request_id: int) -> dict:
    req = session.get(SigningRequest, request_id)
    if not req:
        raise FinalizationError(404, "signing request not found")
    signers = session.exec(
        select(Signer).where(Signer.signing_request_id == req.id).order_by(Signer.signing_order)
    ).all()
    if not all_signed(signers):
        raise FinalizationError(400, "Not all signers have completed signing")

    existing = session.exec(
        select(FinalArtifact).where(FinalArtifact.signing_request_id == req.id)
    ).first()
    if existing:
        return {
            "sealed": True,
            "sha256_final": existing.sha256_final,
            "populated_fields": existing.populated_fields,
            "total_fields": existing.total_fields,
        }

    doc = session.get(Document, req.document_id)
    if not doc:
        raise FinalizationError(404, "document not found")
    try:
        template = load_template(doc)
    except TemplateError as exc:
        raise FinalizationError(400, str(exc))
    except S3Error as exc:
        raise FinalizationError(502, f"document template unavailable: {exc.code}")
    schemas = template.get("schemas") or []
    try:
        result = populate_inputs(flatten_schemas(schemas), [sa_to_dict(s) for s in signers])
    except EmptySchemaError:
        raise FinalizationError(400, "No document schema found")
    for name, reason in result.skipped.items():
        logger.warning("request %s: field %s left blank (%s)", req.id, name, reason)

    key_pdf = f"signed/{req.id}/final.pdf"
    key_audit = f"signed/{req.id}/final.audit.json"
    try:
        original = get_bytes(template.get("basePdf") or doc.pdf_key)
        final_pdf, audit_json, sha_final = render_signed_pdf(
            original,
            schemas,
            result.inputs,
            {
                "signing_request_id": req.id,
                "document_sign_id": req.document_sign_id or "",
                "title": req.title,
                "signers": ", ".join(f"{s.signer_name} <{s.signer_email}>" for s in signers),
                "populated_fields": f"{result.populated} of {result.total}",
            },
        )
        put_bytes(key_pdf, final_pdf, content_type="application/pdf")
        put_bytes(key_audit, audit_json.encode(), content_type="application/json")
    except S3Error as exc:
        raise FinalizationError(502, f"storage error: {exc.code}")
    except (PyPdfError, OSError, ValueError) as exc:
        raise FinalizationError(422, f"could not render final pdf: {exc}")

    session.add(FinalArtifact(
        signing_request_id=req.id,
        s3_key_pdf=key_pdf,
        s3_key_audit_json=key_audit,
        sha256_final=sha_final,
        populated_fields=result.populated,
        total_fields=result.total,
    ))
    req.status = "completed"
    session.add(req)
    session.commit()
    summary = result.summary()
    append_event(session, req.id, "system", "sealed", {"sha256_final": sha_final, **summary})
    logger.info("request %s sealed, %s of %s fields populated", req.id, result.populated, result.total)

    notify_completed(req, signers, final_pdf, sha_final)
    return {"sealed": True, "sha256_final": sha_final, **summary}
