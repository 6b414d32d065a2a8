"""
Small helpers shared by services and routes
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from bson import ObjectId
from bson.errors import InvalidId
from smartwaste.errors import NotFound


def utcnow() -> datetime:
    """Naive UTC now, truncated to MongoDB's millisecond precision"""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_object_id(value: Any, what: str = "Entity") -> ObjectId:
    """Parse an id; ids that cannot exist resolve to NotFound"""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def optional_object_id(value: Any, what: str = "Entity") -> Optional[ObjectId]:
    if value is None or value == "":
        return None
    return to_object_id(value, what)


def serialize_doc(value: Any) -> Any:
    """Replace ObjectIds with strings and _id with id, recursively"""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        cleaned: Dict[str, Any] = {}
        for key, item in value.items():
            cleaned["id" if key == "_id" else key] = serialize_doc(item)
        return cleaned
    if isinstance(value, list):
        return [serialize_doc(item) for item in value]
    return value


def same_id(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    return str(a) == str(b)


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "current": page,
        "pages": (total + limit - 1) // limit if limit else 0,
        "total": total,
    }


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes converted to naive UTC, as stored"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
