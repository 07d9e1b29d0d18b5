"""Signer lifecycle and signing request progress."""
import json
from datetime import datetime
from typing import List, Optional, Sequence

from .models import Signer, SigningRequest

CLOSED_STATUSES = ("completed", "declined", "cancelled")


def request_metadata(req: SigningRequest) -> dict:
    try:
        meta = json.loads(req.metadata_json or "{}")
    except json.JSONDecodeError:
        return {}
    return meta if isinstance(meta, dict) else {}


def signing_mode(req: SigningRequest) -> str:
    return request_metadata(req).get("signing_mode") or "sequential"


def request_message(req: SigningRequest) -> str:
    return request_metadata(req).get("message") or ""


def assign_schema_slots(slot_ids: Sequence[str], count: int) -> List[str]:
    # n-th signer takes the n-th slot; extra signers get a synthetic slot
    return [slot_ids[i] if i < len(slot_ids) else f"signer_{i + 1}" for i in range(count)]


def all_signed(signers: Sequence[Signer]) -> bool:
    return bool(signers) and all(s.status == "signed" for s in signers)


def pending_predecessors(signers: Sequence[Signer], signer: Signer) -> List[Signer]:
    """Signers earlier in the order who have not signed yet."""
    return [
        s for s in signers
        if s.signing_order < signer.signing_order and s.status != "signed"
    ]


def can_sign(req: SigningRequest, signers: Sequence[Signer], signer: Signer) -> List[Signer]:
    """Empty list when ``signer`` may sign now, else the signers blocking it."""
    if signing_mode(req) != "sequential":
        return []
    return pending_predecessors(signers, signer)


def next_signer(signers: Sequence[Signer]) -> Optional[Signer]:
    for s in sorted(signers, key=lambda s: s.signing_order):
        if s.status not in ("signed", "declined"):
            return s
    return None


def recompute_progress(req: SigningRequest, signers: Sequence[Signer], now: Optional[datetime] = None) -> SigningRequest:
    signed = len([s for s in signers if s.status == "signed"])
    viewed = len([s for s in signers if s.viewed_at])
    req.total_signers = len(signers)
    req.completed_signers = signed
    req.viewed_signers = viewed
    # completed is only set once the final PDF exists
    if req.status not in ("cancelled", "completed"):
        if any(s.status == "declined" for s in signers):
            req.status = "declined"
        elif signed:
            req.status = "partially_signed"
        elif viewed:
            req.status = "in_progress"
        else:
            req.status = "initiated"
    req.updated_at = now or datetime.utcnow()
    return req


def display_status(req: SigningRequest, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if req.status == "completed":
        return "Completed"
    if req.status == "cancelled":
        return "Cancelled"
    if req.status == "declined":
        return "Declined"
    if req.expires_at and req.expires_at < now:
        return "Expired"
    if req.completed_signers:
        if req.completed_signers == req.total_signers:
            return "Completed"
        return f"Signed ({req.completed_signers}/{req.total_signers})"
    if req.viewed_signers:
        return f"Viewed ({req.viewed_signers}/{req.total_signers})"
    return "Initiated"
