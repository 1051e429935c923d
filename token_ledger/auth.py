"""
Caller authentication

Binds the caller identity from the transport: the `sub` claim of a JWT
bearer token. Request bodies never carry the caller.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import TokenLedgerConfig, get_config
from .logging_config import get_logger


security = HTTPBearer(auto_error=False)
logger = get_logger("token_ledger.auth")


def create_access_token(account: str, config: Optional[TokenLedgerConfig] = None,
                        expires_in: Optional[timedelta] = None) -> str:
    """Issue a bearer token whose subject is account"""
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": account,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=config.jwt_expiry_hours))
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_caller_account: Optional[str] = Header(None)
) -> str:
    """Dependency that validates the bearer token and returns the caller account"""
    config = get_config()

    if not config.auth_enabled:
        # Development mode: trust a plain header instead of a signed token
        if not x_caller_account:
            raise HTTPException(status_code=401, detail="X-Caller-Account header required")
        return x_caller_account

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    account = payload.get("sub")
    if not account:
        raise HTTPException(status_code=401, detail="Invalid token")
    return account
