import base64
import json
from dataclasses import dataclass
from datetime import date

from errors import ValidationError


@dataclass(frozen=True)
class Cursor:
    date: date
    id: str


def encode_cursor(row_date: date, row_id: str) -> str:
    payload = json.dumps(
        {"date": row_date.isoformat(), "id": str(row_id)}, separators=(",", ":")
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> Cursor:
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise ValidationError("Invalid cursor", {"cursor": ["Invalid cursor"]}) from exc

    if not isinstance(data, dict):
        raise ValidationError("Invalid cursor", {"cursor": ["Invalid cursor"]})
    raw_date = data.get("date")
    raw_id = data.get("id")
    if not isinstance(raw_date, str) or not isinstance(raw_id, str):
        raise ValidationError("Invalid cursor", {"cursor": ["Invalid cursor"]})
    try:
        cursor_date = date.fromisoformat(raw_date)
    except ValueError as exc:
        raise ValidationError("Invalid cursor", {"cursor": ["Invalid cursor"]}) from exc
    return Cursor(date=cursor_date, id=raw_id)
