import json
from typing import List

from .field_assignment import flatten_schemas
from .models import Document
from .storage import get_bytes


class TemplateError(ValueError):
    pass


def load_template(doc: Document) -> dict:
    try:
        template = json.loads(get_bytes(doc.template_key))
    except json.JSONDecodeError:
        raise TemplateError("document template is not valid JSON")
    if not isinstance(template, dict):
        raise TemplateError("document template is not valid JSON")
    return template


def template_fields(template: dict) -> List[dict]:
    return flatten_schemas(template.get("schemas"))
