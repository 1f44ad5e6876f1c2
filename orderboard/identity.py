# orderboard/identity.py
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from firebase_admin import auth as firebase_auth

from .firebase_client import FirebaseClient

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1/accounts:{action}"

# -------------------------
# Error taxonomy
# -------------------------
INVALID_EMAIL = "invalid-email"
USER_NOT_FOUND = "user-not-found"
WRONG_PASSWORD = "wrong-password"
EMAIL_IN_USE = "email-already-in-use"
WEAK_PASSWORD = "weak-password"
INVALID_INVITE = "invalid-invite-code"
UNKNOWN = "unknown"

AUTH_MESSAGES: Dict[str, str] = {
    INVALID_EMAIL: "Neplatný formát e-mailu.",
    USER_NOT_FOUND: "Uživatel s tímto e-mailem neexistuje.",
    WRONG_PASSWORD: "Nesprávné heslo.",
    EMAIL_IN_USE: "Tento e-mail je již registrován.",
    WEAK_PASSWORD: "Heslo musí mít alespoň 6 znaků.",
    INVALID_INVITE: "Tento kód pozvánky neexistuje nebo již byl použit.",
    UNKNOWN: "Nastala chyba. Zkuste to prosím znovu.",
}

# Identity Toolkit error message -> our code
_REST_ERRORS: Dict[str, str] = {
    "INVALID_EMAIL": INVALID_EMAIL,
    "MISSING_EMAIL": INVALID_EMAIL,
    "EMAIL_NOT_FOUND": USER_NOT_FOUND,
    "USER_DISABLED": USER_NOT_FOUND,
    "INVALID_PASSWORD": WRONG_PASSWORD,
    "MISSING_PASSWORD": WRONG_PASSWORD,
    "INVALID_LOGIN_CREDENTIALS": WRONG_PASSWORD,
    "EMAIL_EXISTS": EMAIL_IN_USE,
    "WEAK_PASSWORD": WEAK_PASSWORD,
}

MIN_PASSWORD_LENGTH = 6
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthError(Exception):
    """Identity failure carrying a taxonomy code and a user-facing message."""

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code if code in AUTH_MESSAGES else UNKNOWN
        self.message = message or AUTH_MESSAGES[self.code]
        super().__init__(self.message)


class IdentityUnavailable(Exception):
    """The identity backend cannot be reached or is not configured."""


@dataclass
class Session:
    uid: str
    email: str
    id_token: str
    refresh_token: Optional[str] = None


class IdentityProvider:
    async def sign_in(self, email: str, password: str) -> Session:
        raise NotImplementedError

    async def create_account(self, email: str, password: str) -> Session:
        raise NotImplementedError

    async def sign_out(self, session: Session) -> None:
        raise NotImplementedError

    async def verify(self, id_token: str) -> Optional[Session]:
        """Session for a token, or None when the token is not (or no longer) valid."""
        raise NotImplementedError


# -------------------------
# Firebase Auth
# -------------------------
class FirebaseIdentity(IdentityProvider):
    """
    Email/password accounts on Firebase Auth. Sign-in and sign-up go through
    the Identity Toolkit REST API; tokens are verified with the Admin SDK.
    """
    def __init__(self, client: FirebaseClient, web_api_key: Optional[str], timeout: float = 10.0):
        if not web_api_key:
            raise IdentityUnavailable("FIREBASE_WEB_API_KEY is not set")
        self.client = client
        self.web_api_key = web_api_key
        self.timeout = timeout

    def _post(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = IDENTITY_TOOLKIT_URL.format(action=action)
        try:
            resp = requests.post(url, params={"key": self.web_api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Identity Toolkit %s unreachable: %s", action, e)
            raise AuthError(UNKNOWN) from e

        if resp.status_code == 200:
            return resp.json()

        try:
            raw = resp.json().get("error", {}).get("message", "")
        except ValueError:
            raw = ""
        reason = raw.split(":")[0].strip()
        code = _REST_ERRORS.get(reason, UNKNOWN)
        if code == UNKNOWN:
            logger.error("Identity Toolkit %s failed: status=%s message=%s", action, resp.status_code, raw)
        raise AuthError(code)

    async def _call(self, action: str, email: str, password: str) -> Session:
        payload = {"email": (email or "").strip(), "password": password or "", "returnSecureToken": True}
        data = await self.client.run_blocking(self._post, action, payload)
        return Session(
            uid=data["localId"],
            email=data.get("email", payload["email"]),
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken"),
        )

    async def sign_in(self, email: str, password: str) -> Session:
        session = await self._call("signInWithPassword", email, password)
        logger.info("Signed in uid=%s", session.uid)
        return session

    async def create_account(self, email: str, password: str) -> Session:
        session = await self._call("signUp", email, password)
        logger.info("Created account uid=%s", session.uid)
        return session

    async def sign_out(self, session: Session) -> None:
        await self.client.run_blocking(firebase_auth.revoke_refresh_tokens, session.uid, app=self.client.app)
        logger.info("Signed out uid=%s", session.uid)

    async def verify(self, id_token: str) -> Optional[Session]:
        if not id_token:
            return None
        try:
            claims = await self.client.run_blocking(
                firebase_auth.verify_id_token, id_token, app=self.client.app, check_revoked=True)
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.RevokedIdTokenError,
                firebase_auth.ExpiredIdTokenError, firebase_auth.UserDisabledError):
            return None
        except firebase_auth.CertificateFetchError as e:
            raise IdentityUnavailable(str(e)) from e
        return Session(uid=claims["uid"], email=claims.get("email", ""), id_token=id_token)


# -------------------------
# Sandbox
# -------------------------
class MemoryIdentity(IdentityProvider):
    """In-process accounts for sandbox mode. Tokens live until sign-out."""

    def __init__(self):
        self._accounts: Dict[str, Dict[str, str]] = {}
        self._tokens: Dict[str, Session] = {}

    def _issue(self, uid: str, email: str) -> Session:
        session = Session(uid=uid, email=email, id_token=secrets.token_urlsafe(24))
        self._tokens[session.id_token] = session
        return session

    async def sign_in(self, email: str, password: str) -> Session:
        email = (email or "").strip().lower()
        if not _EMAIL_RE.match(email):
            raise AuthError(INVALID_EMAIL)
        account = self._accounts.get(email)
        if account is None:
            raise AuthError(USER_NOT_FOUND)
        if not secrets.compare_digest(account["password"].encode(), (password or "").encode()):
            raise AuthError(WRONG_PASSWORD)
        return self._issue(account["uid"], email)

    async def create_account(self, email: str, password: str) -> Session:
        email = (email or "").strip().lower()
        if not _EMAIL_RE.match(email):
            raise AuthError(INVALID_EMAIL)
        if email in self._accounts:
            raise AuthError(EMAIL_IN_USE)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(WEAK_PASSWORD)
        uid = uuid.uuid4().hex
        self._accounts[email] = {"uid": uid, "password": password}
        logger.info("Sandbox account created uid=%s", uid)
        return self._issue(uid, email)

    async def sign_out(self, session: Session) -> None:
        for token, s in list(self._tokens.items()):
            if s.uid == session.uid:
                self._tokens.pop(token, None)

    async def verify(self, id_token: str) -> Optional[Session]:
        return self._tokens.get(id_token or "")
