# orderboard/ws_bridge.py
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .actions import OrderActions
from .auth_gate import AuthGate, GateState, GateView, InvalidTransition
from .board_view import OrderBoard
from .context import AppContext
from .edit_session import ConfirmationPending, ConfirmGate, ConfirmRequest, EditSession, EditSlot, request_order_delete
from .invites import InviteSession
from .models import Stage, Technology

logger = logging.getLogger(__name__)

router = APIRouter()

# application close codes
CLOSE_UNAUTHENTICATED = 4401
CLOSE_BACKEND_ERROR = 4503

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class ConnectionManager:
    """Keeps track of open board connections."""

    def __init__(self):
        self.active: List["BoardConnection"] = []

    async def connect(self, conn: "BoardConnection") -> None:
        await conn.ws.accept()
        self.active.append(conn)
        logger.info("WS connected (%d open)", len(self.active))

    def disconnect(self, conn: "BoardConnection") -> None:
        if conn in self.active:
            self.active.remove(conn)
        conn.teardown()
        logger.info("WS disconnected (%d open)", len(self.active))


manager = ConnectionManager()


class BoardConnection:
    """
    One mounted board for one client. Owns its own auth gate and, while
    authenticated, either the order board or the invite list. Every state
    change is queued as a JSON message and pushed by a single sender task.
    """
    def __init__(self, ws: WebSocket, ctx: AppContext):
        self.ws = ws
        self.ctx = ctx
        self.outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.gate = AuthGate(ctx.identity if ctx.ready else None, ctx.invites)
        self.gate.subscribe(self._gate_changed)
        self.confirm = ConfirmGate(on_change=self._confirm_changed)
        self.board: Optional[OrderBoard] = None
        self.invites: Optional[InviteSession] = None
        self.actions: Optional[OrderActions] = None
        self.editor: Optional[EditSession] = None
        self._handlers: Dict[str, Handler] = {
            "search": self._search,
            "sort": self._sort,
            "begin": self._begin,
            "edit": self._edit,
            "key": self._key,
            "blur": self._blur,
            "commit": self._commit,
            "cancel": self._cancel,
            "set_stage": self._set_stage,
            "toggle_urgency": self._toggle_urgency,
            "toggle_technology": self._toggle_technology,
            "create_order": self._create_order,
            "delete": self._delete,
            "confirm": self._confirm,
            "dismiss": self._dismiss,
            "show_invites": self._show_invites,
            "show_board": self._show_board,
            "generate_invite": self._generate_invite,
            "revoke_invite": self._revoke_invite,
            "sign_out": self._sign_out,
        }

    # -------------------------
    # Outgoing
    # -------------------------
    def push(self, message: Dict[str, Any]) -> None:
        self.outbox.put_nowait(message)

    def notice(self, message: str) -> None:
        self.push({"type": "notice", "message": message})

    async def pump(self) -> None:
        while True:
            message = await self.outbox.get()
            if message is None:
                return
            await self.ws.send_text(json.dumps(message, ensure_ascii=False))

    async def flush(self) -> None:
        """Send whatever is queued, without the sender task."""
        self.outbox.put_nowait(None)
        await self.pump()

    def _gate_changed(self, gate: AuthGate) -> None:
        self.push({"type": "state", **gate.describe()})
        self._sync_view()

    def _board_changed(self, board: OrderBoard) -> None:
        self.push({
            "type": "orders",
            "loaded": board.loaded,
            "error": board.error,
            "search": board.search_term,
            "sort": {"column": board.sort_state.column, "direction": board.sort_state.direction.value},
            "rows": [o.to_wire() for o in board.rows],
        })

    def _invites_changed(self, session: InviteSession) -> None:
        self.push({
            "type": "invites",
            "error": session.error,
            "busy": session.busy,
            "invites": [i.model_dump(by_alias=True, mode="json") for i in session.invites if not i.is_consumed],
        })

    def _editing_changed(self, slot: Optional[EditSlot]) -> None:
        payload = None if slot is None else {"orderId": slot.order_id, "field": slot.field, "value": slot.value}
        self.push({"type": "editing", "slot": payload})

    def _confirm_changed(self, request: Optional[ConfirmRequest]) -> None:
        self.push({"type": "confirm", "message": request.message if request else None})

    # -------------------------
    # Mounting
    # -------------------------
    def _sync_view(self) -> None:
        authenticated = self.gate.state is GateState.AUTHENTICATED
        want_board = authenticated and self.gate.view is GateView.BOARD
        want_invites = authenticated and self.gate.view is GateView.INVITES

        if want_board and self.board is None:
            self.board = OrderBoard(self.ctx.orders, on_change=self._board_changed)
            self.actions = OrderActions(self.ctx.orders, self.board.get, notify=self.notice)
            self.editor = EditSession(self.actions, on_change=self._editing_changed)
            self.board.mount()
        elif not want_board and self.board is not None:
            self.board.unmount()
            self.board = self.actions = self.editor = None

        if want_invites and self.invites is None:
            self.invites = InviteSession(self.ctx.invites, self.confirm, notify=self.notice,
                                         on_change=self._invites_changed,
                                         code_length=self.ctx.settings.invite_code_length)
            self.invites.mount()
        elif not want_invites and self.invites is not None:
            self.invites.unmount()
            self.invites = None

    def teardown(self) -> None:
        if self.board is not None:
            self.board.unmount()
            self.board = None
        if self.invites is not None:
            self.invites.unmount()
            self.invites = None
        self.confirm.pending = None

    # -------------------------
    # Incoming
    # -------------------------
    async def handle(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            self.notice("Neplatná zpráva.")
            return
        if not isinstance(message, dict):
            self.notice("Neplatná zpráva.")
            return
        kind = message.get("type")
        handler = self._handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            logger.debug("Unknown WS message type: %r", kind)
            self.notice(f"Neznámá akce: {kind}")
            return
        try:
            await handler(message)
        except (InvalidTransition, ConfirmationPending, ValueError) as e:
            logger.info("Rejected WS action %s: %s", kind, e)
            self.notice(str(e))

    def _board_required(self) -> OrderBoard:
        if self.board is None:
            raise InvalidTransition("board is not shown")
        return self.board

    def _invites_required(self) -> InviteSession:
        if self.invites is None:
            raise InvalidTransition("invites are not shown")
        return self.invites

    async def _search(self, msg):
        self._board_required().search(str(msg.get("term") or ""))

    async def _sort(self, msg):
        self._board_required().sort_by(str(msg.get("column") or ""))

    async def _begin(self, msg):
        board = self._board_required()
        order_id = str(msg.get("orderId") or "")
        order = board.get(order_id)
        if order is None:
            raise ValueError(f"Unknown order: {order_id}")
        field = str(msg.get("field") or "")
        self.editor.begin(order_id, field, order.to_wire().get(field, ""))

    async def _edit(self, msg):
        self._board_required()
        self.editor.set_value(msg.get("value"))

    async def _key(self, msg):
        self._board_required()
        await self.editor.handle_key(str(msg.get("key") or ""))

    async def _blur(self, msg):
        self._board_required()
        await self.editor.blur()

    async def _commit(self, msg):
        self._board_required()
        await self.editor.commit(msg.get("orderId"), msg.get("field"))

    async def _cancel(self, msg):
        self._board_required()
        self.editor.cancel()

    async def _set_stage(self, msg):
        self._board_required()
        await self.actions.set_stage(str(msg.get("orderId") or ""), Stage(msg.get("stage")))

    async def _toggle_urgency(self, msg):
        self._board_required()
        await self.actions.toggle_urgency(str(msg.get("orderId") or ""))

    async def _toggle_technology(self, msg):
        self._board_required()
        await self.actions.toggle_technology(str(msg.get("orderId") or ""), Technology(msg.get("technology")))

    async def _create_order(self, msg):
        self._board_required()
        await self.actions.create_order(msg.get("orderNumber"), msg.get("clientName"),
                                        msg.get("deliveryDate"), msg.get("printType"))

    async def _delete(self, msg):
        board = self._board_required()
        order_id = str(msg.get("orderId") or "")
        order = board.get(order_id)
        if order is None:
            raise ValueError(f"Unknown order: {order_id}")
        request_order_delete(self.confirm, self.actions, order_id, order.order_number)

    async def _confirm(self, msg):
        await self.confirm.confirm()

    async def _dismiss(self, msg):
        await self.confirm.cancel()

    async def _show_invites(self, msg):
        self.gate.show_invites()

    async def _show_board(self, msg):
        self.gate.show_board()

    async def _generate_invite(self, msg):
        invites = self._invites_required()
        await invites.generate()
        self._invites_changed(invites)

    async def _revoke_invite(self, msg):
        self._invites_required().request_revoke(str(msg.get("code") or ""))

    async def _sign_out(self, msg):
        await self.gate.sign_out()


async def stop_sender(sender: "asyncio.Task[None]") -> None:
    """Stop the sender task and collect its outcome."""
    if not sender.done():
        sender.cancel()
    try:
        await sender
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning("WS sender stopped: %s", e)


@router.websocket("/ws/board")
async def board_socket(websocket: WebSocket):
    ctx: AppContext = websocket.app.state.context
    conn = BoardConnection(websocket, ctx)
    await manager.connect(conn)

    if ctx.error:
        conn.gate.fail(ctx.error)
    else:
        await conn.gate.start(websocket.query_params.get("token"))

    if conn.gate.state is not GateState.AUTHENTICATED:
        await conn.flush()
        code = CLOSE_BACKEND_ERROR if conn.gate.state is GateState.ERROR else CLOSE_UNAUTHENTICATED
        manager.disconnect(conn)
        await websocket.close(code=code)
        return

    sender = asyncio.create_task(conn.pump())
    try:
        while conn.gate.state is GateState.AUTHENTICATED:
            await conn.handle(await websocket.receive_text())
        # signed out: drain the final state, then close
        conn.outbox.put_nowait(None)
        await sender
        await websocket.close(code=CLOSE_UNAUTHENTICATED)
    except WebSocketDisconnect:
        logger.info("WS client went away")
    finally:
        await stop_sender(sender)
        manager.disconnect(conn)
