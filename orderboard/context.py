# orderboard/context.py
import logging
from dataclasses import dataclass, field
from typing import Optional

from .board_view import OrderBoard
from .edit_session import ConfirmGate
from .firebase_client import FirebaseClient, FirebaseClientError
from .identity import FirebaseIdentity, IdentityProvider, IdentityUnavailable, MemoryIdentity
from .invites import InviteSession
from .sandbox import mock_orders
from .settings import Settings
from .store import SERVER_TIMESTAMP, Collection, FirestoreCollection, MemoryCollection

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """
    Everything that talks to the backend, built once at startup and passed
    to whoever needs it. ``error`` is set when the backend could not be
    initialised; every gate built from this context then starts in error.
    """
    settings: Settings
    orders: Optional[Collection] = None
    invites: Optional[Collection] = None
    identity: Optional[IdentityProvider] = None
    firebase: Optional[FirebaseClient] = None
    error: Optional[str] = None
    board: Optional[OrderBoard] = field(default=None, repr=False)
    invite_list: Optional[InviteSession] = field(default=None, repr=False)

    @property
    def ready(self) -> bool:
        return self.error is None and self.orders is not None and self.identity is not None

    def open(self) -> None:
        """Mount the shared board and invite list used by the REST surface."""
        if not self.ready or self.board is not None:
            return
        self.board = OrderBoard(self.orders)
        self.board.mount()
        self.invite_list = InviteSession(self.invites, ConfirmGate(), code_length=self.settings.invite_code_length)
        self.invite_list.mount()

    def close(self) -> None:
        if self.board is not None:
            self.board.unmount()
            self.board = None
        if self.invite_list is not None:
            self.invite_list.unmount()
            self.invite_list = None
        if self.firebase is not None:
            self.firebase.close()
        logger.info("Application context closed.")


def build_sandbox_context(settings: Settings) -> AppContext:
    code = settings.sandbox_invite_code
    seeded_invites = {code: {"code": code, "createdAt": SERVER_TIMESTAMP}} if code else {}
    ctx = AppContext(
        settings=settings,
        orders=MemoryCollection(settings.orders_collection, mock_orders()),
        invites=MemoryCollection(settings.invites_collection, seeded_invites),
        identity=MemoryIdentity(),
    )
    logger.warning("Running in SANDBOX mode: data lives in memory only (invite code %s).",
                   settings.sandbox_invite_code or "-")
    return ctx


def build_context(settings: Settings) -> AppContext:
    if settings.sandbox_mode:
        return build_sandbox_context(settings)

    client = FirebaseClient()
    try:
        client.init_app(
            service_account_path=settings.service_account_path,
            service_account_json=settings.service_account_json,
            project_id=settings.project_id,
        )
        identity = FirebaseIdentity(client, settings.web_api_key, timeout=settings.identity_timeout_seconds)
    except (FirebaseClientError, IdentityUnavailable) as e:
        logger.error("Backend unavailable: %s", e)
        client.close()
        return AppContext(settings=settings, error="Firebase není správně nakonfigurován.")

    return AppContext(
        settings=settings,
        orders=FirestoreCollection(client, settings.orders_collection),
        invites=FirestoreCollection(client, settings.invites_collection),
        identity=identity,
        firebase=client,
    )
