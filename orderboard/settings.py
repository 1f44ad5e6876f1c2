# orderboard/settings.py
import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

load_dotenv()


def _env_flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, read from the environment (and .env if present)."""

    service_account_path: Optional[str] = None
    service_account_json: Optional[str] = None
    project_id: Optional[str] = None
    web_api_key: Optional[str] = None

    orders_collection: str = "orders"
    invites_collection: str = "invites"
    invite_code_length: int = 8
    identity_timeout_seconds: float = 10.0

    sandbox_mode: bool = False
    sandbox_invite_code: str = "SANDBOX1"
    log_level: str = "INFO"

    @property
    def firebase_configured(self) -> bool:
        return bool(self.service_account_path or self.service_account_json)


def load_settings() -> Settings:
    settings = Settings(
        service_account_path=os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH") or None,
        service_account_json=os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON") or None,
        project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
        web_api_key=os.getenv("FIREBASE_WEB_API_KEY") or None,
        orders_collection=os.getenv("ORDERS_COLLECTION", "orders"),
        invites_collection=os.getenv("INVITES_COLLECTION", "invites"),
        invite_code_length=int(os.getenv("INVITE_CODE_LENGTH", "8")),
        identity_timeout_seconds=float(os.getenv("IDENTITY_TIMEOUT_SECONDS", "10")),
        sandbox_mode=_env_flag("SANDBOX_MODE"),
        sandbox_invite_code=os.getenv("SANDBOX_INVITE_CODE", "SANDBOX1"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
    logger.debug("Loaded settings (sandbox=%s, orders=%s, invites=%s)",
                 settings.sandbox_mode, settings.orders_collection, settings.invites_collection)
    return settings
