from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field as ORMField

class Document(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    owner_id: Optional[str] = None
    title: str
    filename: str
    pdf_key: str
    template_key: str  # {"basePdf": ..., "schemas": [[field, ...], ...]}
    sha256: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class SigningRequest(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int
    title: str
    initiated_by: Optional[str] = None
    initiated_at: datetime = ORMField(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    status: str = "initiated"  # initiated|in_progress|partially_signed|completed|declined|cancelled
    total_signers: int = 0
    viewed_signers: int = 0
    completed_signers: int = 0
    document_sign_id: Optional[str] = None
    metadata_json: str = "{}"
    created_at: datetime = ORMField(default_factory=datetime.utcnow)
    updated_at: datetime = ORMField(default_factory=datetime.utcnow)

class Signer(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    signing_request_id: int
    signer_email: str
    signer_name: str
    signing_order: int = 1
    status: str = "initiated"  # initiated|viewed|signed|declined
    schema_signer_id: Optional[str] = None
    signature_data: Optional[str] = None
    reminder_count: int = 0
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class Event(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    signing_request_id: int
    actor: str  # system|signer:<id>|user:<id>
    type: str   # created|viewed|signed|declined|cancelled|sealed
    meta_json: str = "{}"
    ip: Optional[str] = None
    ua: Optional[str] = None
    at: datetime = ORMField(default_factory=datetime.utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None

class FinalArtifact(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    signing_request_id: int
    s3_key_pdf: str
    s3_key_audit_json: str
    sha256_final: str
    populated_fields: int = 0
    total_fields: int = 0
    completed_at: datetime = ORMField(default_factory=datetime.utcnow)
