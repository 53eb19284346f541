"""
Security utilities and authentication
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from pydantic import BaseModel
import time
from collections import defaultdict
from sqlalchemy.orm import Session

from guestlist.core.config import settings
from guestlist.core.db import get_db
from guestlist.core.exceptions import AuthenticationError, GuestListError
from guestlist.services.repositories import UserRepo

# Simple in-memory rate limiter
rate_limiter = defaultdict(list)

security = HTTPBearer(auto_error=False)


class SessionUser(BaseModel):
    """The signed-in user as reported by the session provider"""
    id: str
    display_name: Optional[str] = None
    primary_email: Optional[str] = None

    @property
    def name(self) -> str:
        return self.display_name or self.primary_email or "Anonymous"


class RateLimitError(GuestListError):
    status_code = 429
    default_code = "rate_limited"


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> SessionUser:
    """Resolve the bearer session token to a user.

    Deployments backed by an external identity provider override this
    dependency with one that validates their own tokens.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    user = UserRepo.get_by_session_token(db, credentials.credentials)
    if not user:
        raise AuthenticationError("Invalid or expired session")

    return SessionUser(id=user.id, display_name=user.name, primary_email=user.email)


def rate_limit_check(client_ip: str, limit: int = None) -> bool:
    """Simple rate limiting by IP address"""
    if limit is None:
        limit = settings.RATE_LIMIT_PER_MINUTE

    current_time = time.time()
    minute_ago = current_time - 60

    # Clean old requests
    rate_limiter[client_ip] = [
        req_time for req_time in rate_limiter[client_ip]
        if req_time > minute_ago
    ]

    # Check limit
    if len(rate_limiter[client_ip]) >= limit:
        return False

    # Add current request
    rate_limiter[client_ip].append(current_time)
    return True

def enforce_rate_limit(client_ip: str, limit: int = None) -> None:
    if not rate_limit_check(client_ip, limit):
        raise RateLimitError("Rate limit exceeded. Please try again later.")

def get_client_ip(request) -> str:
    """Extract client IP from request"""
    # Check for forwarded IP first (for reverse proxy setups)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    # Check for real IP header
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Fall back to direct client IP
    return request.client.host if request.client else "unknown"
