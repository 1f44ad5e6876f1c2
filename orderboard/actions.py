# orderboard/actions.py
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from .models import Order, OrderValidationError, Stage, Technology, validate_new_order
from .store import SERVER_TIMESTAMP, Collection

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]

MSG_CREATE_FAILED = "Chyba: Zakázku se nepodařilo uložit."
MSG_DELETE_FAILED = "Chyba: Zakázku se nepodařilo smazat."


def log_notice(message: str) -> None:
    logger.warning("User notice: %s", message)


# -------------------------
# Pure update builders
# -------------------------
def stage_update(stage: Stage) -> Dict[str, Any]:
    """Partial record for moving an order to ``stage``."""
    stage = Stage(stage)
    if stage is Stage.COMPLETED:
        return {"currentStage": stage.value, "isCompleted": True, "isUrgent": False}
    return {"currentStage": stage.value, "isCompleted": False}


def toggled_technologies(current: Tuple[Technology, ...], tag: Technology) -> Optional[Tuple[Technology, ...]]:
    """
    New technology set after toggling ``tag``, or None when nothing changes:
    the last remaining tag cannot be removed.
    """
    tag = Technology(tag)
    tags = set(current)
    if tag in tags:
        if len(tags) <= 1:
            return None
        tags.discard(tag)
    else:
        tags.add(tag)
    return tuple(sorted(tags, key=lambda t: t.value))


class OrderActions:
    """
    One-shot writes against the orders collection. Failures are logged;
    create and delete failures also reach the user through ``notify``.
    ``lookup`` resolves an order id against the latest observed snapshot.
    """
    def __init__(self, collection: Collection, lookup: Callable[[str], Optional[Order]],
                 notify: Optional[Notifier] = None):
        self.collection = collection
        self.lookup = lookup
        self.notify = notify or log_notice

    async def create_order(self, order_number: str, client_name: str, delivery_date: str, print_type) -> Optional[str]:
        """Validate and store a new order. Raises OrderValidationError on bad input."""
        new = validate_new_order(order_number, client_name, delivery_date, print_type)
        record = {
            "orderNumber": new.order_number,
            "clientName": new.client_name,
            "deliveryDate": new.delivery_date,
            "currentStage": Stage.STUDIO.value,
            "isCompleted": False,
            "isUrgent": False,
            "printType": [t.value for t in new.print_type],
            "notes": "",
            "createdAt": SERVER_TIMESTAMP,
        }
        try:
            order_id = await self.collection.add(record)
        except Exception:
            logger.exception("Error adding order %s", new.order_number)
            self.notify(MSG_CREATE_FAILED)
            return None
        logger.info("Created order %s (id=%s)", new.order_number, order_id)
        return order_id

    async def update_order(self, order_id: str, fields: Dict[str, Any]) -> bool:
        try:
            await self.collection.update(order_id, fields)
        except Exception:
            logger.exception("Error updating order id=%s keys=%s", order_id, list(fields.keys()))
            return False
        return True

    async def set_stage(self, order_id: str, stage: Stage) -> bool:
        return await self.update_order(order_id, stage_update(stage))

    async def toggle_urgency(self, order_id: str) -> bool:
        order = self.lookup(order_id)
        if order is None:
            logger.warning("toggle_urgency: unknown order id=%s", order_id)
            return False
        return await self.update_order(order_id, {"isUrgent": not order.is_urgent})

    async def toggle_technology(self, order_id: str, tag: Technology) -> bool:
        order = self.lookup(order_id)
        if order is None:
            logger.warning("toggle_technology: unknown order id=%s", order_id)
            return False
        tags = toggled_technologies(order.print_type, tag)
        if tags is None:
            return False
        return await self.update_order(order_id, {"printType": [t.value for t in tags]})

    async def delete_order(self, order_id: str) -> bool:
        try:
            await self.collection.delete(order_id)
        except Exception:
            logger.exception("Error deleting order id=%s", order_id)
            self.notify(MSG_DELETE_FAILED)
            return False
        logger.info("Deleted order id=%s", order_id)
        return True


__all__ = [
    "OrderActions",
    "OrderValidationError",
    "stage_update",
    "toggled_technologies",
]
