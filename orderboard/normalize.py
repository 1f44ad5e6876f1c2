# orderboard/normalize.py
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import PLACEHOLDER, Invite, Order, Stage, Technology

logger = logging.getLogger(__name__)

# -------------------------
# Fallback table
# -------------------------
# canonical field -> ordered raw keys to try; first truthy value wins
FIELD_FALLBACKS: Dict[str, Tuple[str, ...]] = {
    "orderNumber": ("orderNumber", "jobId"),
    "clientName": ("clientName",),
    "currentStage": ("currentStage", "trackingStage"),
    "printType": ("printType", "technology"),
    "deliveryDate": ("deliveryDate",),
    "notes": ("notes",),
}

# legacy keys that stay searchable without entering the canonical shape
SEARCH_ALIAS_KEYS: Tuple[str, ...] = ("jobId", "customer")

_STAGES = {s.value: s for s in Stage}
_TECHNOLOGIES = {t.value: t for t in Technology}


def _first(raw: Mapping[str, Any], field: str) -> Any:
    for key in FIELD_FALLBACKS[field]:
        value = raw.get(key)
        if value:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _ensure_list(x) -> List[Any]:
    if x is None:
        return []
    if isinstance(x, (list, tuple, set, frozenset)):
        return list(x)
    return [x]


# -------------------------
# Dates
# -------------------------
def _utc_date(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date().isoformat()


def _seconds_of(value: Any) -> Optional[float]:
    if isinstance(value, Mapping):
        raw = value.get("seconds", value.get("_seconds"))
    else:
        raw = getattr(value, "seconds", None)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _converter_of(value: Any) -> Optional[Callable[[], Any]]:
    for name in ("to_datetime", "ToDatetime", "to_date"):
        fn = getattr(value, name, None)
        if callable(fn):
            return fn
    return None


def resolve_date(value: Any) -> str:
    """
    Turn a raw delivery date into a plain ``YYYY-MM-DD`` string.
    Tries, in order: plain string, a value that converts to a date,
    a raw seconds-since-epoch count. Anything else yields "".
    """
    if not value:
        return ""
    if isinstance(value, str):
        return value.split("T")[0].strip()
    if isinstance(value, datetime):
        return _utc_date(value)
    if isinstance(value, date):
        return value.isoformat()

    convert = _converter_of(value)
    if convert is not None:
        try:
            converted = convert()
        except Exception:
            logger.debug("Date conversion failed for %r", value, exc_info=True)
            converted = None
        if isinstance(converted, datetime):
            return _utc_date(converted)
        if isinstance(converted, date):
            return converted.isoformat()

    seconds = _seconds_of(value)
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()
        except (OverflowError, OSError, ValueError):
            logger.debug("Out-of-range epoch seconds %r", seconds)
    return ""


# -------------------------
# Field coercion
# -------------------------
def _stage(value: Any) -> Stage:
    return _STAGES.get(_text(value).strip().lower(), Stage.STUDIO)


def _technologies(value: Any) -> Tuple[Technology, ...]:
    tags = set()
    for t in _ensure_list(value):
        tag = _TECHNOLOGIES.get(_text(t).strip().lower())
        if tag is not None:
            tags.add(tag)
    return tuple(sorted(tags, key=lambda t: t.value))


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _client_name(raw: Mapping[str, Any]) -> str:
    name = _first(raw, "clientName")
    if name:
        return _text(name)
    customer = raw.get("customer")
    if customer:
        job_name = raw.get("jobName")
        return _text(customer) + (" / " + _text(job_name) if job_name else "")
    return PLACEHOLDER


def _timestamp(value: Any) -> Any:
    if value is None or isinstance(value, (datetime, str, int, float)):
        return value
    convert = _converter_of(value)
    if convert is not None:
        try:
            return convert()
        except Exception:
            return None
    return None


# -------------------------
# Public API
# -------------------------
def normalize_order(doc_id: str, raw: Optional[Mapping[str, Any]]) -> Order:
    """Map one raw store record onto the canonical :class:`Order`. Pure."""
    raw = raw if isinstance(raw, Mapping) else {}

    stage = _stage(_first(raw, "currentStage"))
    aliases = tuple(_text(raw.get(k)) for k in SEARCH_ALIAS_KEYS if raw.get(k))

    return Order(
        id=_text(doc_id),
        order_number=_text(_first(raw, "orderNumber") or PLACEHOLDER),
        client_name=_client_name(raw),
        current_stage=stage,
        is_completed=stage is Stage.COMPLETED,
        is_urgent=_flag(raw.get("isUrgent")),
        print_type=_technologies(_first(raw, "printType")),
        delivery_date=resolve_date(_first(raw, "deliveryDate")),
        notes=_text(_first(raw, "notes")),
        created_at=_timestamp(raw.get("createdAt")),
        search_aliases=aliases,
    )


def normalize_snapshot(documents: Iterable[Sequence[Any]]) -> List[Order]:
    """Normalize ``(doc_id, data)`` pairs, skipping records that still fail."""
    orders: List[Order] = []
    for doc_id, data in documents:
        try:
            orders.append(normalize_order(doc_id, data))
        except Exception:
            logger.exception("Skipping unreadable order record id=%s", doc_id)
    return orders


def normalize_invite(doc_id: str, raw: Optional[Mapping[str, Any]]) -> Invite:
    raw = raw if isinstance(raw, Mapping) else {}
    return Invite(
        id=_text(doc_id),
        created_at=_timestamp(raw.get("createdAt")),
        consumed_at=_timestamp(raw.get("consumedAt")),
        consumed_by=_text(raw.get("consumedBy")) or None,
    )
