import base64, hashlib, json
from itsdangerous import URLSafeSerializer
from sqlalchemy.inspection import inspect as sa_inspect
from .config import SECRET_KEY

def b64png_to_bytes(data_url: str) -> bytes:
    # expects "data:image/png;base64,....."
    if "," in data_url:
        data_url = data_url.split(",", 1)[1]
    return base64.b64decode(data_url, validate=True)

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def make_token(payload: dict) -> str:
    s = URLSafeSerializer(SECRET_KEY, salt="signing")
    return s.dumps(payload)

def read_token(token: str) -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt="signing")
    return s.loads(token)

def sa_to_dict(obj):
    if obj is None:
        return {}
    mapper = sa_inspect(obj).mapper
    data = {}
    for col in mapper.columns:
        data[col.key] = getattr(obj, col.key)
    return data
