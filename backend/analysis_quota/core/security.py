from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from analysis_quota.core.database import get_db
from analysis_quota.core.errors import NotAuthenticated, QuotaError
from analysis_quota.core.settings import settings
from analysis_quota.models.profile import Profile
from analysis_quota.services.reconciler import provision_default_subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str


def _require_supabase_config() -> str:
    if not settings.supabase_url:
        raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured")
    return settings.supabase_url


def _decode_supabase_jwt(token: str) -> dict[str, Any]:
    import jwt

    audience = settings.supabase_jwt_audience or "authenticated"
    try:
        if settings.supabase_jwt_secret:
            payload = jwt.decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience=audience,
                options={"require": ["exp", "sub"]},
            )
            return dict(payload)

        supabase_url = _require_supabase_config().rstrip("/")
        jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
        issuer = settings.supabase_jwt_issuer or f"{supabase_url}/auth/v1"
        jwks_client = jwt.PyJWKClient(jwks_url)
        signing_key = jwks_client.get_signing_key_from_jwt(token).key
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["ES256", "RS256"],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "sub"]},
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail=NotAuthenticated.public_message)
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail=NotAuthenticated.public_message)
    return token


def _register_identity(db: Session, user_id: str, email: str) -> None:
    """First sight of an identity: record it and provision the free subscription."""
    try:
        db.add(Profile(id=user_id, email=email))
        db.commit()
    except IntegrityError:
        # A concurrent request registered the same identity first.
        db.rollback()
    provision_default_subscription(db, user_id)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)

    claims = _decode_supabase_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if profile is None:
            _register_identity(db, user_id, email)
            logger.info("auth.identity.registered user_id=%s", user_id)
        elif email and (profile.email or "") != email:
            profile.email = email
            db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("auth.identity.lookup_failed user_id=%s", user_id)
        raise HTTPException(status_code=503, detail=QuotaError.public_message)
    except QuotaError as exc:
        raise HTTPException(status_code=503, detail=exc.public_message)

    return CurrentUser(id=user_id, email=email)
