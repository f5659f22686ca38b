import logging
from datetime import datetime
from typing import Optional

import httpx
from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import IDP_TIMEOUT_SECONDS, USERINFO_URL
from database import get_db
from errors import IdentityProviderUnavailable, Unauthenticated
from models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class IdentityGate:
    """Validates bearer tokens by asking the identity provider for the token's userinfo."""

    def __init__(self, userinfo_url: str = USERINFO_URL, timeout: float = IDP_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self.transport = transport

    async def verify(self, token: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    self.userinfo_url,
                    headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as e:
            logger.error(f"Identity provider request failed: {e}")
            raise IdentityProviderUnavailable("Identity provider is unavailable")

        if response.status_code in (401, 403):
            logger.info("Identity provider rejected token")
            raise Unauthenticated("Invalid or expired token")
        if response.status_code != 200:
            logger.error(f"Identity provider returned {response.status_code}")
            raise IdentityProviderUnavailable("Identity provider is unavailable")

        try:
            claims = response.json()
        except ValueError:
            logger.error("Identity provider returned a non-JSON userinfo response")
            raise IdentityProviderUnavailable("Identity provider is unavailable")
        if not claims.get("sub"):
            raise Unauthenticated("Token has no subject")
        return claims


identity_gate = IdentityGate()


def get_identity_gate() -> IdentityGate:
    return identity_gate


def display_name_from_claims(claims: dict) -> str:
    if claims.get("name"):
        return claims["name"]
    full_name = " ".join(p for p in (claims.get("given_name"), claims.get("family_name")) if p)
    return full_name or claims.get("preferred_username") or claims["sub"]


def _find_user(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def _apply_claims(user: User, claims: dict) -> None:
    user.display_name = display_name_from_claims(claims)
    user.email = claims.get("email")
    user.last_seen = datetime.utcnow()


def sync_user(db: Session, claims: dict) -> User:
    """Create or refresh the local copy of the token's user and touch last_seen."""
    user_id = claims["sub"]
    user = _find_user(db, user_id)
    if not user:
        user = User(id=user_id)
        db.add(user)
        logger.info(f"Registering user {user_id}")

    _apply_claims(user, claims)
    try:
        db.commit()
    except IntegrityError:
        # Another request registered the same subject first
        db.rollback()
        user = _find_user(db, user_id)
        if user is None:
            raise
        _apply_claims(user, claims)
        db.commit()
    db.refresh(user)
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    gate: IdentityGate = Depends(get_identity_gate),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Authorization header missing or malformed")
    claims = await gate.verify(credentials.credentials)
    return await run_in_threadpool(sync_user, db, claims)
