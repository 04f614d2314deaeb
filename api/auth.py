from __future__ import annotations
import time
from fastapi import HTTPException
from jose import jwt, JWTError

from api.config import JWT_SECRET, JWT_ALG, ACCESS_TTL_SEC

# Wallet sign-in happens upstream; this service only mints/verifies the
# resulting access tokens. sub = wallet address (the subject).

def now() -> int:
    return int(time.time())

def make_access_token(wallet_address: str, ttl_sec: int = ACCESS_TTL_SEC) -> str:
    payload = {
        "type": "access",
        "sub": wallet_address.lower(),
        "exp": now() + ttl_sec,
        "iat": now()
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")
