"""Field-to-signer resolution and PDF input population.

A document template carries an ordered field schema that is authored before
the signers of a particular signing request are known. When the final PDF is
generated, every field is assigned to at most one signer and the literal value
for that field is extracted from the signer's captured signature payload. The
result is the flat ``{field name: value}`` map handed to the PDF renderer.

Everything here is pure: no storage, no database, no module-level state.
"""
import json
import logging
import re
from dataclasses import dataclass, field as dc_field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

LOCATION_UNAVAILABLE = "Location not available"

# resolution rules, in precedence order
RULE_SCHEMA_SLOT = "schema_signer_id"
RULE_EMAIL = "signer_email"
RULE_SIGNER_ID = "signer_id"
RULE_SIGNING_ORDER = "signing_order"
RULE_FALLBACK = "fallback"

# per-field skip reasons
SKIP_UNNAMED = "unnamed_field"
SKIP_UNRESOLVED = "unresolved_signer"
SKIP_NO_SIGNATURE = "missing_signature_data"
SKIP_BAD_SIGNATURE = "invalid_signature_data"

SLOT_FIELD_TYPES = ("signature", "text")

_LEADING_SEPARATOR = re.compile(r"^,\s*")


class FieldAssignmentError(ValueError):
    pass


class EmptySchemaError(FieldAssignmentError):
    pass


@dataclass(frozen=True)
class SignaturePayload:
    signature_image: Optional[str] = None
    signature: Optional[str] = None
    signer_name: Optional[str] = None
    profile_location: Optional[Dict[str, Any]] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SignaturePayload":
        location = data.get("profile_location")
        return cls(
            signature_image=data.get("signature_image"),
            signature=data.get("signature"),
            signer_name=data.get("signer_name"),
            profile_location=dict(location) if isinstance(location, Mapping) and location else None,
        )


@dataclass
class PopulationResult:
    inputs: Dict[str, str]
    total: int
    assignments: Dict[str, str] = dc_field(default_factory=dict)
    skipped: Dict[str, str] = dc_field(default_factory=dict)

    @property
    def populated(self) -> int:
        return len(self.inputs)

    def summary(self) -> dict:
        return {
            "populated_fields": self.populated,
            "total_fields": self.total,
            "skipped_fields": dict(self.skipped),
        }


def parse_signature_data(raw: Any) -> Optional[SignaturePayload]:
    """Normalize a stored signature payload.

    The payload may arrive already decoded or as serialized JSON text. Returns
    None when it cannot be read as a JSON object.
    """
    if isinstance(raw, Mapping):
        return SignaturePayload.from_mapping(raw)
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(raw, str):
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return SignaturePayload.from_mapping(data)


def field_slot_id(field: Mapping[str, Any]) -> Optional[str]:
    slot = field.get("signerId")
    if not slot:
        props = field.get("properties")
        if isinstance(props, Mapping):
            original = props.get("_originalConfig")
            if isinstance(original, Mapping):
                slot = original.get("signerId")
    return slot or None


def has_assignment_hint(field: Mapping[str, Any]) -> bool:
    # explicit nulls and empty strings count as absent
    return bool(
        field_slot_id(field)
        or field.get("signer_email")
        or field.get("signer_id") not in (None, "")
        or field.get("signing_order") is not None
    )


def collect_slot_ids(fields: Iterable[Mapping[str, Any]]) -> List[str]:
    """Sorted unique signer slot ids used by signature and text fields."""
    slots = set()
    for f in fields:
        slot = field_slot_id(f)
        if slot and f.get("type") in SLOT_FIELD_TYPES:
            slots.add(slot)
    return sorted(slots)


def page_schemas(schemas: Any) -> List[List[dict]]:
    """Normalize a template's ``schemas`` into page-indexed field lists.

    Templates store either one list per page or a flat list of fields; a flat
    list is treated as page 0.
    """
    entries = list(schemas or [])
    if any(isinstance(e, Mapping) for e in entries):
        return [[dict(f) for f in entries if isinstance(f, Mapping)]]
    pages: List[List[dict]] = []
    for page in entries:
        if isinstance(page, (list, tuple)):
            pages.append([dict(f) for f in page if isinstance(f, Mapping)])
        else:
            pages.append([])
    return pages


def flatten_schemas(schemas: Any) -> List[dict]:
    """Template ``schemas`` -> one ordered field list."""
    return [f for page in page_schemas(schemas) for f in page]


def _same_id(a: Any, b: Any) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def _as_order(value: Any) -> Optional[int]:
    # integral values only; 1.5 is not order 1
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def match_hinted_signer(
    field: Mapping[str, Any], signers: Sequence[Mapping[str, Any]]
) -> Tuple[Optional[Mapping[str, Any]], Optional[str]]:
    """Apply the explicit assignment hints of a field, strongest first."""
    slot = field_slot_id(field)
    if slot:
        for s in signers:
            if s.get("schema_signer_id") == slot:
                return s, RULE_SCHEMA_SLOT
    email = field.get("signer_email")
    if email:
        for s in signers:
            if s.get("signer_email") == email:
                return s, RULE_EMAIL
    signer_id = field.get("signer_id")
    if signer_id not in (None, ""):
        for s in signers:
            if _same_id(s.get("id"), signer_id):
                return s, RULE_SIGNER_ID
    order = _as_order(field.get("signing_order"))
    if order is not None:
        for s in signers:
            if _as_order(s.get("signing_order")) == order:
                return s, RULE_SIGNING_ORDER
    return None, None


def signed_in_order(signers: Sequence[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    signed = [s for s in signers if s.get("status") == "signed"]
    return sorted(signed, key=lambda s: _as_order(s.get("signing_order")) or 0)


def resolve_signer(
    field: Mapping[str, Any],
    signers: Sequence[Mapping[str, Any]],
    fallback_position: int = 0,
    signed: Optional[Sequence[Mapping[str, Any]]] = None,
) -> Tuple[Optional[Mapping[str, Any]], Optional[str]]:
    """Pick the signer owning ``field``.

    Fields without any hint are dealt round-robin to signers that have signed,
    ``fallback_position`` being the number of unhinted fields seen before this
    one. A field whose hints match nobody stays unresolved.
    """
    if has_assignment_hint(field):
        return match_hinted_signer(field, signers)
    if signed is None:
        signed = signed_in_order(signers)
    if not signed:
        return None, None
    return signed[fallback_position % len(signed)], RULE_FALLBACK


def fields_for_signer(
    fields: Iterable[Mapping[str, Any]],
    signers: Sequence[Mapping[str, Any]],
    signer_id: Any,
) -> List[Mapping[str, Any]]:
    """Fields shown to one signer: those hinted at them, plus unhinted ones."""
    own = []
    for f in fields:
        if not has_assignment_hint(f):
            own.append(f)
            continue
        target, _ = match_hinted_signer(f, signers)
        if target is not None and _same_id(target.get("id"), signer_id):
            own.append(f)
    return own


def long_date(today: date) -> str:
    return f"{today.strftime('%B')} {today.day}, {today.year}"


def format_location(location: Optional[Mapping[str, Any]]) -> str:
    if not location:
        return LOCATION_UNAVAILABLE
    district = location.get("district") or ""
    state = location.get("state") or ""
    return _LEADING_SEPARATOR.sub("", f"{district}, {state}".strip())


def extract_field_value(
    field: Mapping[str, Any],
    payload: SignaturePayload,
    signer: Mapping[str, Any],
    today: date,
) -> Optional[str]:
    field_type = field.get("type")
    location = payload.profile_location or {}
    if field_type == "signature":
        return payload.signature_image or payload.signature or ""
    if field_type in ("text", "name", "full_name"):
        return payload.signer_name or signer.get("signer_name") or ""
    if field_type in ("date", "datetime"):
        return long_date(today)
    if field_type == "location":
        return format_location(payload.profile_location)
    if field_type == "state":
        return location.get("state") or ""
    if field_type == "district":
        return location.get("district") or ""
    if field_type == "email":
        return signer.get("signer_email") or ""
    return field.get("name") or ""


def populate_inputs(
    fields: Optional[Sequence[Mapping[str, Any]]],
    signers: Sequence[Mapping[str, Any]],
    today: Optional[date] = None,
) -> PopulationResult:
    """Build the PDF input map for a signing request.

    Fields are handled in schema order. A field that cannot be resolved to a
    signer with a readable signature payload is left out of ``inputs`` and
    recorded in ``skipped``; only an empty schema is an error.
    """
    if not fields:
        raise EmptySchemaError("field schema is empty")
    today = today or date.today()
    signers = list(signers or [])
    signed = signed_in_order(signers)
    result = PopulationResult(inputs={}, total=len(fields))
    unhinted_seen = 0

    for idx, f in enumerate(fields):
        name = f.get("name")
        if not name:
            result.skipped[f"#{idx}"] = SKIP_UNNAMED
            logger.warning("field #%s has no name, skipped", idx)
            continue

        position = 0
        if not has_assignment_hint(f):
            position = unhinted_seen
            unhinted_seen += 1
        target, rule = resolve_signer(f, signers, position, signed)
        if target is None:
            result.skipped[name] = SKIP_UNRESOLVED
            logger.warning("no signer resolved for field %s", name)
            continue
        logger.debug("field %s -> signer %s via %s", name, target.get("id"), rule)

        raw = target.get("signature_data")
        if raw is None or raw == "":
            result.skipped[name] = SKIP_NO_SIGNATURE
            logger.warning(
                "no signature data for field %s (signer %s)", name, target.get("signer_email")
            )
            continue
        payload = parse_signature_data(raw)
        if payload is None:
            result.skipped[name] = SKIP_BAD_SIGNATURE
            logger.warning(
                "unreadable signature data for field %s (signer %s)", name, target.get("signer_email")
            )
            continue

        value = extract_field_value(f, payload, target, today)
        if value is None:
            continue
        result.inputs[name] = value
        result.assignments[name] = rule

    logger.info("populated %s of %s fields", result.populated, result.total)
    return result
