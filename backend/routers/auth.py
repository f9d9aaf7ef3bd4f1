import logging
import time
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import Principal, mint_token, require_principal, secret_matches

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionRequest(BaseModel):
    user_id: str
    service_secret: str
    scope: Literal["user", "service"] = "user"


@router.post("/auth/session")
def create_session(payload: SessionRequest):
    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="User id is required.")
    if not payload.service_secret.strip():
        raise HTTPException(status_code=400, detail="Service secret is required.")
    if not secret_matches(payload.service_secret):
        logger.warning("Rejected %s session request for %s: bad service secret", payload.scope, user_id)
        raise HTTPException(status_code=401, detail="Invalid service secret.")

    token, principal = mint_token(user_id, payload.scope)
    if principal.is_service:
        logger.info("Issued service token for %s", principal.user_id)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": principal.user_id,
        "scope": principal.scope,
        "expires_at": principal.expires_at,
        "expires_in": max(0, principal.expires_at - int(time.time())),
    }


@router.get("/auth/me")
def auth_me(principal: Principal = Depends(require_principal)):
    return {
        "user_id": principal.user_id,
        "scope": principal.scope,
        "expires_at": principal.expires_at,
        "issued_at": principal.issued_at,
    }
