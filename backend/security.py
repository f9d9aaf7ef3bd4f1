"""
Bearer tokens for the API.

The upstream auth layer holds SERVICE_SECRET and trades it, together with a
user id, for a signed token at /auth/session. A token carries a scope:
`user` tokens act for one person in rooms they own or review; `service`
tokens run system-wide jobs such as the reconciliation sweep. Room roles are
not baked into the token since accepting an invite changes them mid-session;
the routers check those against the store.

Token layout: `dl1.<base64url claims>.<hex hmac-sha256 of "dl1.<claims>">`.
"""
import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Literal

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, SERVICE_SECRET, SIGNING_KEY

Scope = Literal["user", "service"]
SCOPES: tuple[str, ...] = ("user", "service")
TOKEN_VERSION = "dl1"


class TokenError(ValueError):
    """The bearer token is malformed, forged or expired."""


@dataclass(frozen=True)
class Principal:
    user_id: str
    scope: Scope
    issued_at: int
    expires_at: int

    @property
    def is_service(self) -> bool:
        return self.scope == "service"

    def claims(self) -> dict[str, object]:
        return {"sub": self.user_id, "scp": self.scope, "iat": self.issued_at, "exp": self.expires_at}


def _mac(signed_part: str) -> str:
    return hmac.new(SIGNING_KEY.encode("utf-8"), signed_part.encode("utf-8"), hashlib.sha256).hexdigest()


def secret_matches(candidate: str) -> bool:
    expected = SERVICE_SECRET.strip()
    if not expected:
        return False
    return hmac.compare_digest((candidate or "").strip().encode("utf-8"), expected.encode("utf-8"))


def mint_token(user_id: str, scope: Scope = "user", *, now: int | None = None) -> tuple[str, Principal]:
    issued = int(time.time()) if now is None else now
    principal = Principal(
        user_id=user_id.strip(),
        scope=scope,
        issued_at=issued,
        expires_at=issued + AUTH_TOKEN_TTL_SECONDS,
    )
    body = json.dumps(principal.claims(), separators=(",", ":"), sort_keys=True)
    encoded = base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
    signed_part = f"{TOKEN_VERSION}.{encoded}"
    return f"{signed_part}.{_mac(signed_part)}", principal


def read_token(token: str, *, now: int | None = None) -> Principal:
    parts = (token or "").split(".")
    if len(parts) != 3 or parts[0] != TOKEN_VERSION:
        raise TokenError("Malformed token.")

    signed_part = f"{parts[0]}.{parts[1]}"
    if not hmac.compare_digest(parts[2].encode("utf-8"), _mac(signed_part).encode("ascii")):
        raise TokenError("Bad signature.")

    try:
        padded = parts[1] + "=" * (-len(parts[1]) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
        principal = Principal(
            user_id=str(claims["sub"]).strip(),
            scope=claims["scp"],
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
        )
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
        raise TokenError("Unreadable claims.") from exc

    if not principal.user_id or principal.scope not in SCOPES:
        raise TokenError("Unreadable claims.")
    if principal.expires_at < (int(time.time()) if now is None else now):
        raise TokenError("Expired.")
    return principal


def require_principal(authorization: str | None = Header(default=None)) -> Principal:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    try:
        return read_token(token.strip())
    except TokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")


def require_user_id(principal: Principal = Depends(require_principal)) -> str:
    if principal.is_service:
        raise HTTPException(status_code=403, detail="Service tokens cannot act for a user.")
    return principal.user_id


def require_service(principal: Principal = Depends(require_principal)) -> Principal:
    if not principal.is_service:
        raise HTTPException(status_code=403, detail="A service token is required.")
    return principal
