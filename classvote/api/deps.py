"""API dependencies for data access, authentication and authorization."""

from typing import Annotated

import asyncpg
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from classvote.core.database import get_db
from classvote.core.events import EventBroker, event_broker
from classvote.core.rate_limiting import LoginRateLimiter
from classvote.core.security import decode_access_token
from classvote.core.token_revocation import TokenRevocationList
from classvote.services.email import email_service
from classvote.services.repository import PostgresVotingRepository, VotingRepository
from classvote.services.tickets import TicketNotifier

security = HTTPBearer()


async def get_repository(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> VotingRepository:
    return PostgresVotingRepository(conn)


def get_notifier() -> TicketNotifier:
    return email_service


def get_event_broker() -> EventBroker:
    return event_broker


def get_login_rate_limiter(request: Request) -> LoginRateLimiter:
    return request.app.state.login_rate_limiter


def get_token_revocation(request: Request) -> TokenRevocationList:
    return request.app.state.token_revocation


def _credentials_error(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    repo: Annotated[VotingRepository, Depends(get_repository)],
    revocations: Annotated[TokenRevocationList, Depends(get_token_revocation)],
) -> dict:
    """
    Dependency to get the current authenticated student or teacher.

    Validates the JWT, rejects revoked tokens and loads the account.
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id = payload.get("sub")
    role = payload.get("role")
    jti = payload.get("jti")
    if user_id is None or role not in ("student", "teacher") or jti is None:
        raise _credentials_error()

    if await revocations.is_revoked(jti):
        raise _credentials_error("Token has been revoked")

    if role == "student":
        account = await repo.get_student(user_id)
    else:
        account = await repo.get_teacher(user_id)
    if account is None:
        raise _credentials_error("User not found")

    return {
        "id": account["id"],
        "role": role,
        "name": account["name"],
        "email": account["email"],
        "jti": jti,
        "exp": payload.get("exp"),
    }


def require_student(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """Raises HTTP 403 unless the caller is a student."""
    if current_user["role"] != "student":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return current_user


def require_teacher(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """Raises HTTP 403 unless the caller is a teacher."""
    if current_user["role"] != "teacher":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return current_user
