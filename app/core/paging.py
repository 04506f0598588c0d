import base64, json
from datetime import datetime

def encode_cursor(obj: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj, separators=(",",":")).encode()).decode()

def decode_cursor(token: str | None) -> dict | None:
    if not token: return None
    try:
        return json.loads(base64.urlsafe_b64decode(token.encode()).decode())
    except (ValueError, UnicodeDecodeError):
        raise ValueError("invalid_cursor")

def inbox_cursor(created_at: datetime, id_) -> str:
    return encode_cursor({"ts": created_at.isoformat(), "id": str(id_)})
