import json
import logging
from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from ..auth import AccessContext, resolve_access_context, require_owner_or_admin
from ..config import DEFAULT_EXPIRY_DAYS, PDF_GENERATION_MODE
from ..db import get_session
from ..document_ids import generate_document_sign_id, validate_document_sign_id
from ..events import append_event
from ..field_assignment import collect_slot_ids
from ..finalize import FinalizationError, generate_final_pdf
from ..models import Document, FinalArtifact, Signer, SigningRequest
from ..notifications import notify_signature_requested, signing_link
from ..schemas import SigningRequestCreate
from ..templates import TemplateError, load_template, template_fields
from ..utils import sa_to_dict
from ..workflow import CLOSED_STATUSES, assign_schema_slots, display_status, next_signer, request_message, signing_mode

logger = logging.getLogger(__name__)

router = APIRouter()

def _get_request(session: Session, request_id: int, ctx: AccessContext) -> SigningRequest:
    req = session.get(SigningRequest, request_id)
    if not req:
        raise HTTPException(404, "signing request not found")
    require_owner_or_admin(req.initiated_by, ctx)
    return req

def _signers(session: Session, request_id: int):
    return session.exec(
        select(Signer).where(Signer.signing_request_id == request_id).order_by(Signer.signing_order)
    ).all()

def _serialize_signer(s: Signer):
    return {
        "id": s.id,
        "name": s.signer_name,
        "email": s.signer_email,
        "signing_order": s.signing_order,
        "status": s.status,
        "schema_signer_id": s.schema_signer_id,
        "viewed_at": s.viewed_at,
        "signed_at": s.signed_at,
        "decline_reason": s.decline_reason,
        "reminder_count": s.reminder_count,
    }

def _serialize_request(req: SigningRequest, signers=None):
    data = {
        "id": req.id,
        "document_id": req.document_id,
        "title": req.title,
        "document_sign_id": req.document_sign_id,
        "status": req.status,
        "display_status": display_status(req),
        "signing_mode": signing_mode(req),
        "initiated_by": req.initiated_by,
        "initiated_at": req.initiated_at,
        "expires_at": req.expires_at,
        "total_signers": req.total_signers,
        "viewed_signers": req.viewed_signers,
        "completed_signers": req.completed_signers,
    }
    if signers is not None:
        data["signers"] = [_serialize_signer(s) for s in signers]
    return data

def _resolve_document_sign_id(session: Session, requested):
    if requested is None:
        return generate_document_sign_id()
    error = validate_document_sign_id(requested)
    if error:
        raise HTTPException(400, error)
    value = requested.strip()
    taken = session.exec(
        select(SigningRequest).where(SigningRequest.document_sign_id == value)
    ).first()
    if taken:
        raise HTTPException(409, "Document Sign ID already exists")
    return value

@router.post("", status_code=201)
def create_signing_request(
    data: SigningRequestCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    if not data.signers:
        raise HTTPException(400, "At least one signer is required")
    seen = set()
    for s in data.signers:
        if not s.name.strip() or not s.email.strip():
            raise HTTPException(400, "Signer name and email are required")
        # duplicates are checked case-insensitively; stored emails keep their case
        email = s.email.strip().lower()
        if email in seen:
            raise HTTPException(400, f"duplicate signer email {s.email.strip()}")
        seen.add(email)

    doc = session.get(Document, data.document_id)
    if not doc:
        raise HTTPException(404, "document not found")
    require_owner_or_admin(doc.owner_id, ctx)
    try:
        template = load_template(doc)
    except TemplateError as exc:
        raise HTTPException(400, str(exc))
    fields = template_fields(template)
    if not fields:
        raise HTTPException(400, "No document schema found")
    slots = assign_schema_slots(collect_slot_ids(fields), len(data.signers))

    now = datetime.utcnow()
    req = SigningRequest(
        document_id=doc.id,
        title=data.title,
        initiated_by=ctx.user_id,
        initiated_at=now,
        expires_at=data.due_date or now + timedelta(days=DEFAULT_EXPIRY_DAYS),
        status="initiated",
        total_signers=len(data.signers),
        document_sign_id=_resolve_document_sign_id(session, data.document_sign_id),
        metadata_json=json.dumps({"signing_mode": data.signing_mode, "message": data.message}),
    )
    session.add(req); session.commit(); session.refresh(req)

    signers = []
    for idx, s in enumerate(data.signers):
        signer = Signer(
            signing_request_id=req.id,
            signer_email=s.email.strip(),
            signer_name=s.name.strip(),
            signing_order=idx + 1,
            schema_signer_id=slots[idx],
        )
        session.add(signer)
        signers.append(signer)
    session.commit()
    for signer in signers:
        session.refresh(signer)
    append_event(session, req.id, f"user:{ctx.user_id or 'admin'}", "created", {
        "signing_request_id": req.id,
        "signers": [{"email": s.signer_email, "schema_signer_id": s.schema_signer_id} for s in signers],
    })

    # sequential requests only invite the first signer; the rest follow as each one signs
    recipients = signers if data.signing_mode == "parallel" else signers[:1]
    for signer in recipients:
        notify_signature_requested(req, signer, data.message)
    logger.info("signing request %s created with %s signers", req.id, len(signers))
    return _serialize_request(req, signers)

@router.get("")
def list_signing_requests(
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    query = select(SigningRequest).order_by(SigningRequest.created_at.desc())
    if ctx.role != "admin":
        query = query.where(SigningRequest.initiated_by == ctx.user_id)
    return [_serialize_request(r) for r in session.exec(query).all()]

@router.get("/{request_id}")
def get_signing_request(
    request_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    req = _get_request(session, request_id, ctx)
    data = _serialize_request(req, _signers(session, req.id))
    final = session.exec(
        select(FinalArtifact).where(FinalArtifact.signing_request_id == req.id)
    ).first()
    data["final_artifact"] = sa_to_dict(final) if final else None
    return data

@router.post("/{request_id}/cancel")
def cancel_signing_request(
    request_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    req = _get_request(session, request_id, ctx)
    if req.status == "completed":
        raise HTTPException(409, "Completed signing requests cannot be cancelled")
    if req.status == "cancelled":
        raise HTTPException(409, "Signing request already cancelled")
    req.status = "cancelled"
    req.updated_at = datetime.utcnow()
    session.add(req); session.commit()
    append_event(session, req.id, f"user:{ctx.user_id or 'admin'}", "cancelled", {})
    return {"ok": True, "status": req.status}

@router.post("/{request_id}/remind")
def remind_signers(
    request_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    req = _get_request(session, request_id, ctx)
    if req.status in CLOSED_STATUSES:
        raise HTTPException(409, f"signing request is {req.status}")
    signers = _signers(session, req.id)
    if signing_mode(req) == "sequential":
        current = next_signer(signers)
        pending = [current] if current else []
    else:
        pending = [s for s in signers if s.status not in ("signed", "declined")]
    message = request_message(req)
    for s in pending:
        notify_signature_requested(req, s, message)
        s.reminder_count += 1
        session.add(s)
    session.commit()
    return {"ok": True, "reminded": [s.signer_email for s in pending]}

@router.post("/{request_id}/generate-pdf")
def generate_pdf(
    request_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    req = _get_request(session, request_id, ctx)
    if req.status == "cancelled":
        raise HTTPException(409, "signing request was cancelled")
    if PDF_GENERATION_MODE == "queue":
        from ..tasks import enqueue_final_pdf
        return {"queued": True, "task_id": enqueue_final_pdf(req.id)}
    try:
        return generate_final_pdf(session, req.id)
    except FinalizationError as exc:
        raise HTTPException(exc.status_code, exc.detail)

# Dev helper: get signing links without tailing logs
@router.get("/{request_id}/dev-magic-links")
def dev_magic_links(
    request_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    req = _get_request(session, request_id, ctx)
    return {
        "signing_request_id": req.id,
        "links": [
            {"signer": {"id": s.id, "name": s.signer_name, "email": s.signer_email}, "link": signing_link(s)}
            for s in _signers(session, req.id)
        ],
    }
