# orderboard/edit_session.py
import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Optional, Union

from .actions import OrderActions
from .models import EDITABLE_FIELDS

logger = logging.getLogger(__name__)

CONFIRM_KEYS = ("Enter",)
CANCEL_KEYS = ("Escape",)


@dataclass
class EditSlot:
    order_id: str
    field: str
    value: str


class EditSession:
    """
    Single-slot inline editor. At most one ``(order_id, field)`` cell is
    open; opening another discards the previous scratch value unsaved.
    """
    def __init__(self, actions: OrderActions, on_change: Optional[Callable[[Optional[EditSlot]], None]] = None):
        self.actions = actions
        self.on_change = on_change
        self.slot: Optional[EditSlot] = None

    def _set_slot(self, slot: Optional[EditSlot]) -> None:
        self.slot = slot
        if self.on_change is not None:
            self.on_change(slot)

    def is_editing(self, order_id: str, field: str) -> bool:
        return self.slot is not None and self.slot.order_id == order_id and self.slot.field == field

    def begin(self, order_id: str, field: str, current_value: str) -> EditSlot:
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Field is not editable: {field}")
        if self.slot is not None:
            logger.debug("Discarding open edit %s/%s", self.slot.order_id, self.slot.field)
        slot = EditSlot(order_id, field, "" if current_value is None else str(current_value))
        self._set_slot(slot)
        return slot

    def set_value(self, value: str) -> None:
        if self.slot is None:
            return
        self.slot.value = "" if value is None else str(value)

    def cancel(self) -> None:
        self._set_slot(None)

    async def commit(self, order_id: Optional[str] = None, field: Optional[str] = None) -> bool:
        """
        Send the scratch value as a one-field update and close the slot.
        Returns True only if an update was sent and acknowledged.
        """
        slot = self.slot
        if slot is None:
            return False
        if (order_id is not None and order_id != slot.order_id) or (field is not None and field != slot.field):
            return False

        self._set_slot(None)

        if slot.field == "notes":
            value = slot.value
        else:
            value = slot.value.strip()
            if not value:
                return False
            if slot.field == "deliveryDate" and not _is_iso_date(value):
                logger.info("Rejected delivery date edit %r for order id=%s", value, slot.order_id)
                return False

        return await self.actions.update_order(slot.order_id, {slot.field: value})

    async def handle_key(self, key: str) -> bool:
        if key in CONFIRM_KEYS:
            return await self.commit()
        if key in CANCEL_KEYS:
            self.cancel()
        return False

    async def blur(self) -> bool:
        # leaving the cell saves, same as Enter
        return await self.commit()


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# -------------------------
# Two-step confirmation
# -------------------------
Callback = Callable[[], Union[None, Awaitable[None]]]


class ConfirmationPending(Exception):
    pass


@dataclass
class ConfirmRequest:
    message: str
    on_confirm: Callback
    on_cancel: Callback


class ConfirmGate:
    """Holds at most one pending confirmation request."""

    def __init__(self, on_change: Optional[Callable[[Optional[ConfirmRequest]], None]] = None):
        self.on_change = on_change
        self.pending: Optional[ConfirmRequest] = None

    def _set(self, request: Optional[ConfirmRequest]) -> None:
        self.pending = request
        if self.on_change is not None:
            self.on_change(request)

    def request(self, message: str, on_confirm: Callback, on_cancel: Optional[Callback] = None) -> ConfirmRequest:
        if self.pending is not None:
            raise ConfirmationPending(self.pending.message)
        req = ConfirmRequest(message, on_confirm, on_cancel or (lambda: None))
        self._set(req)
        return req

    async def confirm(self) -> bool:
        req = self.pending
        if req is None:
            return False
        self._set(None)
        result = req.on_confirm()
        if result is not None:
            await result
        return True

    async def cancel(self) -> bool:
        req = self.pending
        if req is None:
            return False
        self._set(None)
        result = req.on_cancel()
        if result is not None:
            await result
        return True


def request_order_delete(gate: ConfirmGate, actions: OrderActions, order_id: str,
                         order_number: str) -> ConfirmRequest:
    """Open the delete confirmation for one order."""
    message = f"Opravdu chcete zakázku {order_number} smazat? Tato akce je nevratná."

    async def _confirm():
        await actions.delete_order(order_id)

    return gate.request(message, _confirm)
