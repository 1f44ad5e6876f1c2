# orderboard/models.py
from datetime import date
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class Stage(str, Enum):
    STUDIO = "studio"
    PRINT = "print"
    BOOKBINDING = "bookbinding"
    COMPLETED = "completed"


# fixed forward order of production
STAGE_ORDER: Tuple[Stage, ...] = (Stage.STUDIO, Stage.PRINT, Stage.BOOKBINDING, Stage.COMPLETED)

STAGE_LABELS = {
    Stage.STUDIO: "Studio",
    Stage.PRINT: "Tisk",
    Stage.BOOKBINDING: "Knihárna",
    Stage.COMPLETED: "Hotovo",
}


class Technology(str, Enum):
    DIGITAL = "digital"
    OFFSET = "offset"


PLACEHOLDER = "???"

# inline-editable fields, by wire name
EDITABLE_FIELDS = ("orderNumber", "clientName", "deliveryDate", "notes")


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        use_enum_values=False,
    )


class Order(_WireModel):
    """Canonical order, as produced by :func:`orderboard.normalize.normalize_order`."""

    id: str
    order_number: str = PLACEHOLDER
    client_name: str = PLACEHOLDER
    current_stage: Stage = Stage.STUDIO
    is_completed: bool = False
    is_urgent: bool = False
    print_type: Tuple[Technology, ...] = ()
    delivery_date: str = ""
    notes: str = ""
    created_at: Any = None
    # legacy identifiers (jobId, customer) kept for search only
    search_aliases: Tuple[str, ...] = Field(default=(), exclude=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Invite(_WireModel):
    id: str
    created_at: Any = None
    consumed_at: Any = None
    consumed_by: Optional[str] = None

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None


class OrderValidationError(ValueError):
    pass


class NewOrder(BaseModel):
    """Validated input of the create-order form."""

    order_number: str
    client_name: str
    delivery_date: str
    print_type: Tuple[Technology, ...]

    @field_validator("order_number", "client_name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("delivery_date")
    @classmethod
    def _valid_date(cls, v: str) -> str:
        v = (v or "").strip()
        date.fromisoformat(v)
        return v

    @field_validator("print_type", mode="before")
    @classmethod
    def _technologies(cls, v):
        tags = sorted({Technology(_tag_text(t)) for t in (v or [])}, key=lambda t: t.value)
        if not tags:
            raise ValueError("at least one technology is required")
        return tuple(tags)


def _tag_text(tag: Any) -> str:
    if isinstance(tag, Enum):
        tag = tag.value
    return str(tag).strip().lower()


def validate_new_order(order_number: str, client_name: str, delivery_date: str, print_type) -> NewOrder:
    """Build a :class:`NewOrder` or raise :class:`OrderValidationError`."""
    if isinstance(print_type, (str, bytes)) or not isinstance(print_type, (Iterable, type(None))):
        # a bare string would otherwise be split into characters
        raise OrderValidationError("Invalid order: print_type")
    try:
        return NewOrder(
            order_number=order_number or "",
            client_name=client_name or "",
            delivery_date=delivery_date or "",
            print_type=list(print_type or []),
        )
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise OrderValidationError("Invalid order: " + ", ".join(fields)) from e
