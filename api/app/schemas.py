from datetime import datetime
from pydantic import BaseModel
from typing import List, Literal, Optional

class SignerCreate(BaseModel):
    name: str
    email: str

class SigningRequestCreate(BaseModel):
    document_id: int
    title: str
    signers: List[SignerCreate]
    signing_mode: Literal["sequential", "parallel"] = "sequential"
    message: str = "Please review and sign this document."
    due_date: Optional[datetime] = None
    document_sign_id: Optional[str] = None

class SignSubmit(BaseModel):
    signature_data: dict  # signature_image (data url), signer_name, optional profile_location

class DeclineSubmit(BaseModel):
    reason: Optional[str] = None
