from __future__ import annotations
from fastapi import Depends, HTTPException, Header

from api.auth import decode_token

def require_access(authorization: str | None = Header(default=None)) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized. Sign in with your wallet.")
    token = authorization.split(" ", 1)[1].strip()
    data = decode_token(token)
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Not an access token")
    return data

def require_subject(claims: dict = Depends(require_access)) -> str:
    """Wallet address every query below is scoped to."""
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise HTTPException(status_code=401, detail="Token has no subject")
    return subject.strip().lower()
