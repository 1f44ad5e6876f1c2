# orderboard/auth_gate.py
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from .identity import UNKNOWN, AuthError, IdentityProvider, IdentityUnavailable, Session
from .invites import register_with_invite
from .store import Collection

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    LOADING = "loading"
    ERROR = "error"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class GateView(str, Enum):
    BOARD = "board"
    INVITES = "invites"


ALLOWED_TRANSITIONS: Dict[GateState, Set[GateState]] = {
    GateState.LOADING: {GateState.ERROR, GateState.UNAUTHENTICATED, GateState.AUTHENTICATED},
    GateState.UNAUTHENTICATED: {GateState.AUTHENTICATED},
    GateState.AUTHENTICATED: {GateState.UNAUTHENTICATED},
    GateState.ERROR: set(),
}

MSG_NOT_CONFIGURED = "Firebase není nakonfigurován."


class InvalidTransition(Exception):
    pass


def can_transition(current: GateState, new: GateState) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


class AuthGate:
    """
    Top-level session state: loading, then error / unauthenticated /
    authenticated. ``error`` is final. While authenticated the gate also
    remembers whether the board or the invite administration is shown.
    """
    def __init__(self, identity: Optional[IdentityProvider], invites: Optional[Collection] = None):
        self.identity = identity
        self.invites = invites
        self.state = GateState.LOADING
        self.view = GateView.BOARD
        self.session: Optional[Session] = None
        self.error: Optional[str] = None
        self._listeners: List[Callable[["AuthGate"], None]] = []

    def subscribe(self, listener: Callable[["AuthGate"], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _transition(self, new: GateState) -> None:
        if not can_transition(self.state, new):
            raise InvalidTransition(f"{self.state.value} -> {new.value}")
        logger.debug("Auth gate %s -> %s", self.state.value, new.value)
        self.state = new
        if new is not GateState.AUTHENTICATED:
            self.view = GateView.BOARD
        self._notify()

    def fail(self, message: str) -> None:
        """Enter the terminal error state (backend unreachable or misconfigured)."""
        self.error = message
        self.session = None
        self._transition(GateState.ERROR)

    async def start(self, id_token: Optional[str] = None) -> GateState:
        """Resolve the initial identity check."""
        if self.state is not GateState.LOADING:
            return self.state
        if self.identity is None:
            self.fail(MSG_NOT_CONFIGURED)
            return self.state
        try:
            session = await self.identity.verify(id_token) if id_token else None
        except IdentityUnavailable as e:
            logger.error("Identity backend unreachable: %s", e)
            self.fail(str(e) or MSG_NOT_CONFIGURED)
            return self.state
        self._set_session(session)
        return self.state

    def _set_session(self, session: Optional[Session]) -> None:
        self.session = session
        self._transition(GateState.AUTHENTICATED if session else GateState.UNAUTHENTICATED)

    async def sign_in(self, email: str, password: str) -> Session:
        self._require(GateState.UNAUTHENTICATED)
        try:
            session = await self.identity.sign_in(email, password)
        except AuthError:
            raise
        except Exception as e:
            logger.exception("Sign-in failed")
            raise AuthError(UNKNOWN) from e
        self._set_session(session)
        return session

    async def register(self, email: str, password: str, invite_code: str) -> Session:
        self._require(GateState.UNAUTHENTICATED)
        if self.invites is None:
            raise AuthError(UNKNOWN)
        try:
            session = await register_with_invite(self.identity, self.invites, email, password, invite_code)
        except AuthError:
            raise
        except Exception as e:
            logger.exception("Registration failed")
            raise AuthError(UNKNOWN) from e
        self._set_session(session)
        return session

    async def sign_out(self) -> None:
        self._require(GateState.AUTHENTICATED)
        session = self.session
        try:
            await self.identity.sign_out(session)
        except Exception:
            logger.exception("Sign-out call failed for uid=%s", session.uid if session else None)
        self.session = None
        self._transition(GateState.UNAUTHENTICATED)

    def _require(self, state: GateState) -> None:
        if self.state is not state:
            raise InvalidTransition(f"expected {state.value}, gate is {self.state.value}")

    def show_invites(self) -> None:
        self._require(GateState.AUTHENTICATED)
        if self.view is not GateView.INVITES:
            self.view = GateView.INVITES
            self._notify()

    def show_board(self) -> None:
        self._require(GateState.AUTHENTICATED)
        if self.view is not GateView.BOARD:
            self.view = GateView.BOARD
            self._notify()

    def describe(self) -> dict:
        return {
            "state": self.state.value,
            "view": self.view.value if self.state is GateState.AUTHENTICATED else None,
            "user": self.session.email if self.session else None,
            "error": self.error,
        }
