"""Registration and login.

Both endpoints are rate limited per client address and return a bearer
token together with the public user profile.
"""

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from .. import services
from ..config import settings
from ..database import get_session
from ..errors import AuthenticationError
from ..schemas import LoginIn, RegisterIn, TokenOut, UserOut
from ..utils.rate_limit import InMemoryRateLimiter

router = APIRouter(prefix="/api/auth", tags=["auth"])

auth_rate_limiter = InMemoryRateLimiter(settings.AUTH_RATE_LIMIT_PER_MIN, settings.AUTH_RATE_LIMIT_WINDOW_SECONDS)


def _limit(request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    auth_rate_limiter.enforce(f"{client}:{request.url.path}")


def _token_response(user) -> TokenOut:
    return TokenOut(access_token=services.AuthService.issue_token(user), user=UserOut.model_validate(user))


@router.post("/register", response_model=TokenOut, status_code=201)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_session)):
    """Create an account seeded with default groups and grade categories."""
    _limit(request)
    user = services.AuthService(db).register(payload.email, payload.password, payload.name)
    return _token_response(user)


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    _limit(request)
    user = services.AuthService(db).authenticate(payload.email, payload.password)
    if not user:
        raise AuthenticationError("Invalid credentials")
    return _token_response(user)
