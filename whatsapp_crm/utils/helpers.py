import re
from datetime import datetime, timezone
from typing import Any, Optional

from bson.objectid import ObjectId
from bson.errors import InvalidId

JID_SUFFIX = "@s.whatsapp.net"
NON_DIGITS = re.compile(r"\D")


def utcnow() -> datetime:
    # Naive UTC, matching what pymongo hands back from the database
    return datetime.now(timezone.utc).replace(tzinfo=None)


def serialize_doc(doc: Any) -> Any:
    """
    Recursively serialize a MongoDB document (or a list of documents)
    into JSON-friendly types.
    - ObjectId -> str
    - datetime -> ISO string
    """
    if isinstance(doc, list):
        return [serialize_doc(item) for item in doc]

    if not isinstance(doc, dict):
        return doc

    out = {}
    for k, v in doc.items():
        if isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, (dict, list)):
            out[k] = serialize_doc(v)
        else:
            out[k] = v

    # Rename "_id" to "id" for frontend convenience
    if "_id" in out:
        out["id"] = out.pop("_id")

    return out


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a path or payload; None when it is not a valid ObjectId."""
    if value is None:
        return None
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def phone_from_jid(remote_jid: Optional[str]) -> str:
    """'5511999:3@s.whatsapp.net' -> '5511999'"""
    if not remote_jid:
        return ""
    return remote_jid.split("@", 1)[0].split(":", 1)[0].strip()


def to_jid(phone: str) -> str:
    if "@" in phone:
        return phone
    return NON_DIGITS.sub("", phone) + JID_SUFFIX
