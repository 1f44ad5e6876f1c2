# orderboard/board_view.py
import functools
import heapq
import logging
import unicodedata
from datetime import date
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from .models import Order, Stage
from .normalize import normalize_snapshot
from .store import Collection, Document, Unsubscribe

logger = logging.getLogger(__name__)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


SORT_COLUMNS: Tuple[str, ...] = ("clientName", "deliveryDate") + tuple(s.value for s in Stage)
DEFAULT_SORT_COLUMN = "deliveryDate"


class SortState(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str = DEFAULT_SORT_COLUMN
    direction: SortDirection = SortDirection.ASC

    @field_validator("column")
    @classmethod
    def _known_column(cls, v: str) -> str:
        if v not in SORT_COLUMNS:
            raise ValueError(f"Unknown sort column: {v}")
        return v

    def toggle(self, column: str) -> "SortState":
        """Same column flips the direction; a new column starts ascending."""
        if column not in SORT_COLUMNS:
            raise ValueError(f"Unknown sort column: {column}")
        if column == self.column:
            flipped = SortDirection.DESC if self.direction is SortDirection.ASC else SortDirection.ASC
            return SortState(column=column, direction=flipped)
        return SortState(column=column, direction=SortDirection.ASC)


# -------------------------
# Filter
# -------------------------
def matches_search(order: Order, term: str) -> bool:
    needle = (term or "").casefold()
    if not needle:
        return True
    haystack = (order.client_name, order.notes, order.order_number) + order.search_aliases
    if any(needle in (text or "").casefold() for text in haystack):
        return True
    return any(needle in tag.value for tag in order.print_type)


# -------------------------
# Sort
# -------------------------
# letters with a caron that Czech orders as separate letters right after their base
_CZECH_OWN_LETTERS = {"č": "c", "ř": "r", "š": "s", "ž": "z"}


def collation_key(text: str) -> Tuple[Tuple[Tuple[str, int], ...], str]:
    """
    Czech ordering key. Primary level: case-insensitive letters, acute
    accents and rings ignored, "č ř š ž" right after "c r s z", and "ch"
    right after "h". Ties are broken on the lowercased text itself.
    """
    folded = unicodedata.normalize("NFC", (text or "").casefold())
    primary = []
    i = 0
    while i < len(folded):
        ch = folded[i]
        if ch == "c" and folded[i + 1:i + 2] == "h":
            primary.append(("h", 1))
            i += 2
            continue
        if ch in _CZECH_OWN_LETTERS:
            primary.append((_CZECH_OWN_LETTERS[ch], 1))
        else:
            base = "".join(c for c in unicodedata.normalize("NFKD", ch) if not unicodedata.combining(c))
            primary.extend((b, 0) for b in (base or ch))
        i += 1
    return tuple(primary), folded


def _delivery_key(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        # missing or unparseable dates sort as late as possible
        return date.max


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _column_comparison(a: Order, b: Order, column: str) -> int:
    if column == "clientName":
        return _cmp(collation_key(a.client_name), collation_key(b.client_name))
    if column == "deliveryDate":
        return _cmp(_delivery_key(a.delivery_date), _delivery_key(b.delivery_date))
    if column in SORT_COLUMNS:
        # orders sitting in the column's stage come first
        return _cmp(a.current_stage.value != column, b.current_stage.value != column)
    return 0


def compare_orders(a: Order, b: Order, sort_state: SortState) -> int:
    if not a.is_completed and not b.is_completed:
        if a.is_urgent and not b.is_urgent:
            return -1
        if b.is_urgent and not a.is_urgent:
            return 1
    multiplier = 1 if sort_state.direction is SortDirection.ASC else -1
    return _column_comparison(a, b, sort_state.column) * multiplier


def apply_sorting(orders: Iterable[Order], sort_state: SortState) -> List[Order]:
    """
    Sort with the same tiers as :func:`compare_orders`, but without relying
    on that comparator being transitive: open orders are ranked by urgency
    then column, completed orders by column only, and the two runs are
    merged on the column. Ties keep their input order.
    """
    multiplier = 1 if sort_state.direction is SortDirection.ASC else -1
    by_column = functools.cmp_to_key(
        lambda a, b: _column_comparison(a, b, sort_state.column) * multiplier)

    orders = list(orders)
    active = sorted((o for o in orders if not o.is_completed), key=by_column)
    active.sort(key=lambda o: not o.is_urgent)
    done = sorted((o for o in orders if o.is_completed), key=by_column)
    return list(heapq.merge(active, done, key=by_column))


def project(orders: Sequence[Order], search_term: str = "", sort_state: Optional[SortState] = None) -> List[Order]:
    """
    Filtered, sorted view of ``orders``. Always a fresh list; the input is
    left untouched, and equal inputs give equal output.
    """
    sort_state = sort_state or SortState()
    return apply_sorting([o for o in orders if matches_search(o, search_term)], sort_state)


# -------------------------
# Live board
# -------------------------
class OrderBoard:
    """
    Read-only projection of one orders collection, kept current by a live
    subscription. The projection is recomputed only when the orders, the
    search term or the sort state change.
    """
    def __init__(self, collection: Collection, on_change: Optional[Callable[["OrderBoard"], None]] = None):
        self.collection = collection
        self.on_change = on_change
        self.orders: List[Order] = []
        self.search_term = ""
        self.sort_state = SortState()
        self.loaded = False
        self.error: Optional[str] = None
        self._by_id: Dict[str, Order] = {}
        self._version = 0
        self._cache_key = None
        self._rows: List[Order] = []
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    def mount(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.collection.subscribe(self._on_snapshot, self._on_error)
        logger.debug("Board mounted on %s", self.collection.name)

    def unmount(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            logger.debug("Board unmounted from %s", self.collection.name)

    def _on_snapshot(self, documents: List[Document]) -> None:
        self.orders = normalize_snapshot(documents)
        self._by_id = {o.id: o for o in self.orders}
        self._version += 1
        self.loaded = True
        self.error = None
        self._notify()

    def _on_error(self, exc: Exception) -> None:
        # keep whatever we had; no automatic resubscribe
        logger.error("Order subscription failed on %s: %s", self.collection.name, exc)
        self.error = "Chyba při načítání dat."
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def get(self, order_id: str) -> Optional[Order]:
        return self._by_id.get(order_id)

    def search(self, term: str) -> None:
        self.search_term = term or ""
        self._notify()

    def sort_by(self, column: str) -> SortState:
        self.sort_state = self.sort_state.toggle(column)
        self._notify()
        return self.sort_state

    @property
    def rows(self) -> List[Order]:
        key = (self._version, self.search_term, self.sort_state)
        if key != self._cache_key:
            self._rows = project(self.orders, self.search_term, self.sort_state)
            self._cache_key = key
        return list(self._rows)
