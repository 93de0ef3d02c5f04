"""
auth.py – Identitet för ScanVault.

Stöder två lägen via miljövariabeln AUTH_MODE:
  off    – Ingen autentisering (default). Identiteten tas från formulärfältet
           "username" som klienten skickar med uppladdningen.
  apikey – API-nyckel i X-API-Key-headern. Formulärfältet ignoreras.

API-nycklar lagras som kommaseparerad lista i SCANVAULT_API_KEYS med
formatet "user1:abc123,user2:xyz456". Användare listade i
SCANVAULT_ADMIN_USERS får rollen "admin" och kan läsa granskningsloggen.

Miljövariablerna läses vid varje anrop så att tester kan sätta dem med
monkeypatch.setenv.
"""

from dataclasses import dataclass
import logging
import os
import re

from fastapi import Form, HTTPException, Request

logger = logging.getLogger("scanvault.auth")

IDENTITY_RE = re.compile(r"^[\w.@-]{1,64}$")


@dataclass(frozen=True)
class Identity:
    username: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _auth_mode() -> str:
    return os.getenv("AUTH_MODE", "off").strip().lower()


def _api_key_map() -> dict[str, str]:
    keys: dict[str, str] = {}
    for entry in os.getenv("SCANVAULT_API_KEYS", "").split(","):
        entry = entry.strip()
        if ":" not in entry:
            continue
        uid, key = entry.split(":", 1)
        if uid.strip() and key.strip():
            keys[key.strip()] = uid.strip()
    return keys


def _admin_users() -> set[str]:
    raw = os.getenv("SCANVAULT_ADMIN_USERS", "")
    return {name.strip() for name in raw.split(",") if name.strip()}


def _identity_for(username: str) -> Identity:
    role = "admin" if username in _admin_users() else "user"
    return Identity(username=username, role=role)


def _resolve_apikey_user(request: Request) -> str | None:
    """Försök att lösa ut användarnamn från X-API-Key-headern."""
    key = request.headers.get("X-API-Key", "").strip()
    if not key:
        return None
    return _api_key_map().get(key)


async def get_current_identity(
    request: Request,
    username: str | None = Form(None),
) -> Identity | None:
    """
    FastAPI-dependency för uppladdningar.

    Returnerar None om AUTH_MODE=off och inget användarnamn skickades,
    så att pipelinen kan avvisa anropet som ofullständigt.
    """
    mode = _auth_mode()

    if mode == "off":
        if not username:
            return None
        if not IDENTITY_RE.match(username):
            raise HTTPException(status_code=400, detail="Invalid username")
        return _identity_for(username)

    if mode == "apikey":
        user_id = _resolve_apikey_user(request)
        if user_id is None:
            logger.warning(
                "Unauthorized upload attempt from %s – ogiltig eller saknad API-nyckel",
                request.client.host if request.client else "unknown",
            )
            raise HTTPException(
                status_code=401,
                detail="Invalid or missing API key. Provide the X-API-Key header.",
            )
        return _identity_for(user_id)

    # Okänt läge – fail-closed
    logger.error("Unknown AUTH_MODE: %s", mode)
    raise HTTPException(status_code=500, detail="Authentication misconfigured")


async def require_admin(request: Request) -> Identity:
    """Dependency för admin-vyn. I läget off är vyn öppen."""
    mode = _auth_mode()
    if mode == "off":
        return Identity(username="anonymous", role="admin")

    if mode == "apikey":
        user_id = _resolve_apikey_user(request)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid or missing API key.")
        identity = _identity_for(user_id)
        if not identity.is_admin:
            logger.warning("Non-admin %s denied access to audit log", user_id)
            raise HTTPException(status_code=403, detail="Admin role required")
        return identity

    logger.error("Unknown AUTH_MODE: %s", mode)
    raise HTTPException(status_code=500, detail="Authentication misconfigured")
