import json
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlmodel import Session
from ..auth import AccessContext, resolve_access_context, require_owner_or_admin
from ..db import get_session
from ..field_assignment import collect_slot_ids, flatten_schemas
from ..models import Document
from ..storage import put_bytes
from ..templates import TemplateError, load_template, template_fields
from ..utils import canonical_json, sha256_bytes

router = APIRouter()

@router.post("", status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    schemas: str = Form(...),
    title: str = Form(None),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    try:
        parsed = json.loads(schemas)
    except json.JSONDecodeError:
        raise HTTPException(400, "schemas must be JSON")
    if not isinstance(parsed, list) or not flatten_schemas(parsed):
        raise HTTPException(400, "schemas must be a non-empty list of page field lists")
    content = await file.read()
    filename = file.filename or "document.pdf"
    doc = Document(
        owner_id=ctx.user_id,
        title=title or filename,
        filename=filename,
        pdf_key="",
        template_key="",
        sha256=sha256_bytes(content),
    )
    session.add(doc); session.commit(); session.refresh(doc)

    doc.pdf_key = f"documents/{doc.id}/{filename}"
    doc.template_key = f"documents/{doc.id}/template.json"
    put_bytes(doc.pdf_key, content, content_type="application/pdf")
    template = {"basePdf": doc.pdf_key, "schemas": parsed}
    put_bytes(doc.template_key, canonical_json(template).encode(), content_type="application/json")
    session.add(doc); session.commit(); session.refresh(doc)
    return {"id": doc.id, "title": doc.title, "signer_slots": collect_slot_ids(flatten_schemas(parsed))}

@router.get("/{document_id}")
def get_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = session.get(Document, document_id)
    if not doc:
        raise HTTPException(404, "document not found")
    require_owner_or_admin(doc.owner_id, ctx)
    try:
        fields = template_fields(load_template(doc))
    except TemplateError as exc:
        raise HTTPException(400, str(exc))
    return {
        "id": doc.id,
        "title": doc.title,
        "filename": doc.filename,
        "sha256": doc.sha256,
        "created_at": doc.created_at,
        "field_count": len(fields),
        "signer_slots": collect_slot_ids(fields),
    }
