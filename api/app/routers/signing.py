import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from itsdangerous import BadData
from sqlmodel import Session, select
from ..config import PDF_GENERATION_MODE
from ..db import get_session
from ..events import append_event
from ..field_assignment import fields_for_signer
from ..finalize import FinalizationError, generate_final_pdf
from ..models import Document, FinalArtifact, Signer, SigningRequest
from ..notifications import notify_signature_requested
from ..schemas import DeclineSubmit, SignSubmit
from ..storage import get_bytes
from ..templates import TemplateError, load_template, template_fields
from ..utils import canonical_json, read_token, sa_to_dict
from ..workflow import CLOSED_STATUSES, all_signed, can_sign, next_signer, recompute_progress, request_message, signing_mode

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------- helpers ----------
def _load(session: Session, token: str):
    try:
        data = read_token(token)
    except BadData:
        raise HTTPException(404, "not found")
    signer = session.get(Signer, data.get("signer_id"))
    if not signer:
        raise HTTPException(404, "not found")
    req = session.get(SigningRequest, signer.signing_request_id)
    if not req:
        raise HTTPException(404, "not found")
    return signer, req

def _signers(session: Session, request_id: int):
    return session.exec(
        select(Signer).where(Signer.signing_request_id == request_id).order_by(Signer.signing_order)
    ).all()

def _ensure_open(req: SigningRequest):
    if req.status in CLOSED_STATUSES:
        raise HTTPException(409, f"signing request is {req.status}")
    if req.expires_at and req.expires_at < datetime.utcnow():
        raise HTTPException(410, "signing request has expired")

def _finalize(session: Session, req: SigningRequest) -> dict:
    if PDF_GENERATION_MODE == "queue":
        from ..tasks import enqueue_final_pdf
        return {"queued": True, "task_id": enqueue_final_pdf(req.id)}
    try:
        return generate_final_pdf(session, req.id)
    except FinalizationError as exc:
        # signatures are already stored; the initiator can retry generation
        logger.error("request %s: final pdf generation failed: %s", req.id, exc.detail)
        return {"sealed": False, "error": exc.detail}

# ---------- routes ----------

@router.get("/{token}")
def load_signing_session(token: str, request: Request, session: Session = Depends(get_session)):
    signer, req = _load(session, token)
    signers = _signers(session, req.id)
    doc = session.get(Document, req.document_id)
    if not doc:
        raise HTTPException(404, "not found")
    try:
        fields = template_fields(load_template(doc))
    except TemplateError as exc:
        raise HTTPException(400, str(exc))

    if signer.viewed_at is None and req.status not in CLOSED_STATUSES:
        signer.viewed_at = datetime.utcnow()
        if signer.status == "initiated":
            signer.status = "viewed"
        session.add(signer); session.flush()
        recompute_progress(req, signers)
        session.add(req); session.commit()
        append_event(session, req.id, f"signer:{signer.id}", "viewed", {},
                     ip=request.client.host if request.client else None,
                     ua=request.headers.get("user-agent"))

    final_artifact = session.exec(
        select(FinalArtifact).where(FinalArtifact.signing_request_id == req.id)
    ).first()
    blocking = can_sign(req, signers, signer)
    signer_data = sa_to_dict(signer)
    signer_data.pop("signature_data", None)
    return {
        "signing_request": {
            "id": req.id,
            "title": req.title,
            "document_sign_id": req.document_sign_id,
            "status": req.status,
            "signing_mode": signing_mode(req),
            "expires_at": req.expires_at,
        },
        "signer": signer_data,
        "can_sign": not blocking and signer.status not in ("signed", "declined"),
        "waiting_on": [s.signer_email for s in blocking],
        "final_artifact": sa_to_dict(final_artifact) if final_artifact else None,
        "fields": fields_for_signer(fields, [sa_to_dict(s) for s in signers], signer.id),
    }

@router.get("/{token}/pdf")
def get_original_pdf(token: str, session: Session = Depends(get_session)):
    signer, req = _load(session, token)
    doc = session.get(Document, req.document_id)
    if not doc:
        raise HTTPException(404, "not found")
    return Response(content=get_bytes(doc.pdf_key), media_type="application/pdf")

@router.get("/{token}/final-pdf")
def get_final_pdf(token: str, session: Session = Depends(get_session)):
    signer, req = _load(session, token)
    final_artifact = session.exec(
        select(FinalArtifact).where(FinalArtifact.signing_request_id == req.id)
    ).first()
    if not final_artifact:
        raise HTTPException(404, "final artifact not ready")
    pdf_bytes = get_bytes(final_artifact.s3_key_pdf)
    filename = f"{req.document_sign_id or req.id}-signed.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.post("/{token}/sign")
def submit_signature(token: str, payload: SignSubmit, request: Request, session: Session = Depends(get_session)):
    signer, req = _load(session, token)
    _ensure_open(req)
    if signer.status == "signed":
        raise HTTPException(409, "already signed")
    if signer.status == "declined":
        raise HTTPException(409, "signer has declined")
    signers = _signers(session, req.id)
    blocking = can_sign(req, signers, signer)
    if blocking:
        raise HTTPException(400, "Waiting on earlier signers: " + ", ".join(s.signer_email for s in blocking))

    signature = dict(payload.signature_data)
    if not signature.get("signature_image") and not signature.get("signature"):
        raise HTTPException(400, "signature image required")
    signature.setdefault("signer_name", signer.signer_name)

    now = datetime.utcnow()
    signer.signature_data = canonical_json(signature)
    signer.status = "signed"
    signer.signed_at = now
    if signer.viewed_at is None:
        signer.viewed_at = now
    session.add(signer); session.flush()
    recompute_progress(req, signers, now)
    session.add(req); session.commit()
    append_event(session, req.id, f"signer:{signer.id}", "signed", {"signer_id": signer.id},
                 ip=request.client.host if request.client else None,
                 ua=request.headers.get("user-agent"))

    response: dict = {"ok": True, "status": req.status}
    if not all_signed(signers):
        response["waiting_on"] = len([s for s in signers if s.status != "signed"])
        if signing_mode(req) == "sequential":
            upcoming = next_signer(signers)
            if upcoming:
                notify_signature_requested(req, upcoming, request_message(req))
        return response

    response.update(_finalize(session, req))
    session.refresh(req)
    response["status"] = req.status
    return response

@router.post("/{token}/decline")
def decline_signing(token: str, payload: DeclineSubmit, session: Session = Depends(get_session)):
    signer, req = _load(session, token)
    _ensure_open(req)
    if signer.status == "signed":
        raise HTTPException(409, "already signed")
    signer.status = "declined"
    signer.decline_reason = (payload.reason or "").strip() or None
    session.add(signer); session.flush()
    recompute_progress(req, _signers(session, req.id))
    session.add(req); session.commit()
    append_event(session, req.id, f"signer:{signer.id}", "declined", {"reason": signer.decline_reason})
    return {"ok": True, "status": req.status}
