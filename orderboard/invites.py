# orderboard/invites.py
import logging
import secrets
import string
from typing import Any, Callable, Dict, List, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from .actions import Notifier, log_notice
from .edit_session import ConfirmGate, ConfirmRequest
from .identity import INVALID_INVITE, UNKNOWN, AuthError, IdentityProvider, Session
from .models import Invite
from .normalize import normalize_invite
from .store import SERVER_TIMESTAMP, Collection, Document, DocumentExists, Unsubscribe

logger = logging.getLogger(__name__)

INVITE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_CODE_LENGTH = 8
# fresh codes tried before giving up on a collision streak
CREATE_ATTEMPTS = 3

MSG_CODE_REQUIRED = "Kód pozvánky je povinný."
MSG_LOAD_FAILED = "Nepodařilo se načíst seznam pozvánek."
MSG_GENERATE_FAILED = "Nepodařilo se vygenerovat pozvánku."
MSG_REVOKE_FAILED = "Nepodařilo se smazat pozvánku."


def generate_invite_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(length))


@retry(stop=stop_after_attempt(CREATE_ATTEMPTS), retry=retry_if_exception_type(DocumentExists), reraise=True)
async def create_invite(collection: Collection, length: int = DEFAULT_CODE_LENGTH) -> str:
    """Store a new unused invite under a fresh code. An existing code is never overwritten."""
    code = generate_invite_code(length)
    await collection.create(code, {"code": code, "createdAt": SERVER_TIMESTAMP})
    return code


class InviteSession:
    """
    Invite administration: live list, generate, revoke after confirmation.
    The code is the document id, so registration can look it up directly.
    """
    def __init__(self, collection: Collection, gate: ConfirmGate, notify: Optional[Notifier] = None,
                 on_change: Optional[Callable[["InviteSession"], None]] = None,
                 code_length: int = DEFAULT_CODE_LENGTH):
        self.collection = collection
        self.gate = gate
        self.notify = notify or log_notice
        self.on_change = on_change
        self.code_length = code_length
        self.invites: List[Invite] = []
        self.error: Optional[str] = None
        self.busy = False
        self._unsubscribe: Optional[Unsubscribe] = None

    def mount(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.collection.subscribe(self._on_snapshot, self._on_error)

    def unmount(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    def _on_snapshot(self, documents: List[Document]) -> None:
        self.invites = [normalize_invite(d.id, d.data) for d in documents]
        self.error = None
        self._changed()

    def _on_error(self, exc: Exception) -> None:
        logger.error("Invite subscription failed: %s", exc)
        self.error = MSG_LOAD_FAILED
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    async def generate(self) -> Optional[str]:
        self.busy = True
        self.error = None
        try:
            code = await create_invite(self.collection, self.code_length)
        except Exception:
            logger.exception("Error generating invite")
            self.error = MSG_GENERATE_FAILED
            self._changed()
            return None
        finally:
            self.busy = False
        logger.info("Generated invite %s", code)
        return code

    async def revoke(self, code: str) -> bool:
        try:
            await self.collection.delete(code)
        except Exception:
            logger.exception("Error deleting invite %s", code)
            self.notify(MSG_REVOKE_FAILED)
            return False
        logger.info("Revoked invite %s", code)
        return True

    def request_revoke(self, code: str) -> ConfirmRequest:
        async def _confirm():
            await self.revoke(code)
        return self.gate.request(f"Opravdu chcete smazat kód pozvánky {code}?", _confirm)


# -------------------------
# Registration
# -------------------------
def _claim(email: str) -> Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]:
    def _fn(current):
        if current is None or current.get("consumedAt"):
            return None
        return {"consumedAt": SERVER_TIMESTAMP, "consumedBy": email}
    return _fn


def _release(current):
    if current is None:
        return None
    return {"consumedAt": None, "consumedBy": None}


async def register_with_invite(identity: IdentityProvider, invites: Collection,
                               email: str, password: str, code: str) -> Session:
    """
    Create an account that requires a valid invite code.
    The invite is claimed in one transaction before the account is created,
    released if creation fails and deleted once it succeeds. A claimed code
    is never accepted again, even if the final delete fails.
    """
    code = (code or "").strip()
    if not code:
        raise AuthError(INVALID_INVITE, MSG_CODE_REQUIRED)

    try:
        claimed = await invites.transact(code, _claim((email or "").strip()))
    except Exception as e:
        logger.exception("Invite lookup failed for %s", code)
        raise AuthError(UNKNOWN) from e
    if not claimed:
        raise AuthError(INVALID_INVITE)

    try:
        session = await identity.create_account(email, password)
    except Exception:
        try:
            await invites.transact(code, _release)
        except Exception:
            logger.exception("Failed to release invite %s after failed registration", code)
        raise

    try:
        await invites.delete(code)
    except Exception:
        logger.exception("Invite %s consumed but not deleted; it stays claimed", code)
    logger.info("Registered uid=%s with invite %s", session.uid, code)
    return session
