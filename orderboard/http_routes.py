# orderboard/http_routes.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import ValidationError

from .actions import OrderActions
from .auth_gate import AuthGate, GateState
from .board_view import DEFAULT_SORT_COLUMN, SortState, project
from .context import AppContext
from .edit_session import ConfirmGate, EditSession, request_order_delete
from .identity import AuthError, IdentityUnavailable, Session
from .models import EDITABLE_FIELDS, Order, OrderValidationError
from .schemas import (
    Credentials,
    CreatedResponse,
    FieldEdit,
    GateResponse,
    OrderCreate,
    OrdersResponse,
    Registration,
    SessionResponse,
    StageChange,
    TechnologyToggle,
    WriteResponse,
)

logger = logging.getLogger(__name__)

http_router = APIRouter()


# -------------------------
# Dependencies
# -------------------------
def get_context(request: Request) -> AppContext:
    ctx: AppContext = request.app.state.context
    if not ctx.ready:
        raise HTTPException(status_code=503, detail=ctx.error or "Backend unavailable")
    return ctx


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def current_session(ctx: AppContext = Depends(get_context),
                          authorization: Optional[str] = Header(default=None)) -> Session:
    token = _bearer(authorization)
    try:
        session = await ctx.identity.verify(token) if token else None
    except IdentityUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return session


def _auth_failure(e: AuthError) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": e.code, "message": e.message})


def _order_or_404(ctx: AppContext, order_id: str) -> Order:
    order = ctx.board.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


class _Notices:
    def __init__(self):
        self.messages: List[str] = []

    def __call__(self, message: str) -> None:
        self.messages.append(message)


def _actions(ctx: AppContext, notices: Optional[_Notices] = None) -> OrderActions:
    return OrderActions(ctx.orders, ctx.board.get, notify=notices)


# -------------------------
# Health / session
# -------------------------
@http_router.get("/")
async def root():
    return {"status": "ok", "service": "orderboard"}


@http_router.get("/session", response_model=GateResponse)
async def session_state(request: Request, authorization: Optional[str] = Header(default=None)):
    ctx: AppContext = request.app.state.context
    gate = AuthGate(ctx.identity if ctx.ready else None, ctx.invites)
    if ctx.error:
        gate.fail(ctx.error)
    else:
        await gate.start(_bearer(authorization))
    return gate.describe()


# -------------------------
# Auth
# -------------------------
async def _open_gate(ctx: AppContext) -> AuthGate:
    gate = AuthGate(ctx.identity, ctx.invites)
    await gate.start()
    if gate.state is not GateState.UNAUTHENTICATED:
        raise HTTPException(status_code=503, detail=gate.error or "Backend unavailable")
    return gate


@http_router.post("/auth/login", response_model=SessionResponse)
async def login(body: Credentials, ctx: AppContext = Depends(get_context)):
    gate = await _open_gate(ctx)
    try:
        session = await gate.sign_in(body.email, body.password)
    except AuthError as e:
        raise _auth_failure(e)
    return {"token": session.id_token, "uid": session.uid, "email": session.email}


@http_router.post("/auth/register", response_model=SessionResponse, status_code=201)
async def register(body: Registration, ctx: AppContext = Depends(get_context)):
    gate = await _open_gate(ctx)
    try:
        session = await gate.register(body.email, body.password, body.invite_code)
    except AuthError as e:
        raise _auth_failure(e)
    return {"token": session.id_token, "uid": session.uid, "email": session.email}


@http_router.post("/auth/logout", response_model=WriteResponse)
async def logout(ctx: AppContext = Depends(get_context), session: Session = Depends(current_session)):
    try:
        await ctx.identity.sign_out(session)
    except Exception:
        logger.exception("Sign-out failed for uid=%s", session.uid)
        return {"ok": False}
    return {"ok": True}


# -------------------------
# Orders
# -------------------------
@http_router.get("/orders", response_model=OrdersResponse)
async def list_orders(
    q: str = "",
    sort: str = DEFAULT_SORT_COLUMN,
    direction: str = "asc",
    ctx: AppContext = Depends(get_context),
    session: Session = Depends(current_session),
):
    try:
        sort_state = SortState(column=sort, direction=direction)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid sort")
    rows = project(ctx.board.orders, q, sort_state)
    return {
        "orders": [o.to_wire() for o in rows],
        "count": len(rows),
        "sort": {"column": sort_state.column, "direction": sort_state.direction.value},
        "search": q,
    }


@http_router.post("/orders", response_model=CreatedResponse, status_code=201)
async def create_order(body: OrderCreate, ctx: AppContext = Depends(get_context),
                       session: Session = Depends(current_session)):
    notices = _Notices()
    try:
        order_id = await _actions(ctx, notices).create_order(
            body.orderNumber, body.clientName, body.deliveryDate, body.printType)
    except OrderValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if order_id is None:
        raise HTTPException(status_code=502, detail=" ".join(notices.messages))
    return {"id": order_id}


@http_router.patch("/orders/{order_id}", response_model=WriteResponse)
async def edit_order_field(order_id: str, body: FieldEdit, ctx: AppContext = Depends(get_context),
                           session: Session = Depends(current_session)):
    if body.field not in EDITABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Field is not editable: {body.field}")
    order = _order_or_404(ctx, order_id)
    editor = EditSession(_actions(ctx))
    current = order.to_wire().get(body.field, "")
    editor.begin(order_id, body.field, current)
    editor.set_value(body.value)
    return {"ok": await editor.commit(order_id, body.field)}


@http_router.post("/orders/{order_id}/stage", response_model=WriteResponse)
async def change_stage(order_id: str, body: StageChange, ctx: AppContext = Depends(get_context),
                       session: Session = Depends(current_session)):
    _order_or_404(ctx, order_id)
    return {"ok": await _actions(ctx).set_stage(order_id, body.stage)}


@http_router.post("/orders/{order_id}/urgency", response_model=WriteResponse)
async def toggle_urgency(order_id: str, ctx: AppContext = Depends(get_context),
                         session: Session = Depends(current_session)):
    _order_or_404(ctx, order_id)
    return {"ok": await _actions(ctx).toggle_urgency(order_id)}


@http_router.post("/orders/{order_id}/technology", response_model=WriteResponse)
async def toggle_technology(order_id: str, body: TechnologyToggle, ctx: AppContext = Depends(get_context),
                            session: Session = Depends(current_session)):
    _order_or_404(ctx, order_id)
    return {"ok": await _actions(ctx).toggle_technology(order_id, body.technology)}


@http_router.delete("/orders/{order_id}", response_model=WriteResponse)
async def delete_order(order_id: str, confirm: bool = Query(default=False),
                       ctx: AppContext = Depends(get_context), session: Session = Depends(current_session)):
    order = _order_or_404(ctx, order_id)
    notices = _Notices()
    gate = ConfirmGate()
    request = request_order_delete(gate, _actions(ctx, notices), order_id, order.order_number)
    if not confirm:
        # first step: hand the confirmation text back to the caller
        await gate.cancel()
        raise HTTPException(status_code=409, detail={"confirm": request.message})
    await gate.confirm()
    if notices.messages:
        raise HTTPException(status_code=502, detail=" ".join(notices.messages))
    return {"ok": True}


# -------------------------
# Invites
# -------------------------
@http_router.get("/invites")
async def list_invites(ctx: AppContext = Depends(get_context), session: Session = Depends(current_session)):
    invites = ctx.invite_list
    if invites.error:
        raise HTTPException(status_code=502, detail=invites.error)
    return {"invites": [i.model_dump(by_alias=True, mode="json") for i in invites.invites if not i.is_consumed]}


@http_router.post("/invites", response_model=CreatedResponse, status_code=201)
async def create_invite(ctx: AppContext = Depends(get_context), session: Session = Depends(current_session)):
    code = await ctx.invite_list.generate()
    if code is None:
        raise HTTPException(status_code=502, detail=ctx.invite_list.error)
    return {"id": code}


@http_router.delete("/invites/{code}", response_model=WriteResponse)
async def revoke_invite(code: str, confirm: bool = Query(default=False),
                        ctx: AppContext = Depends(get_context), session: Session = Depends(current_session)):
    if not confirm:
        raise HTTPException(status_code=409, detail={"confirm": f"Opravdu chcete smazat kód pozvánky {code}?"})
    ok = await ctx.invite_list.revoke(code)
    if not ok:
        raise HTTPException(status_code=502, detail="Nepodařilo se smazat pozvánku.")
    return {"ok": True}
