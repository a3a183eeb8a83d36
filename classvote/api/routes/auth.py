"""Authentication routes for students and teachers."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, field_validator

from classvote.api.deps import (
    get_current_user,
    get_login_rate_limiter,
    get_repository,
    get_token_revocation,
)
from classvote.core.config import settings
from classvote.core.logging_config import audit_logger, get_logger
from classvote.core.rate_limiting import LoginRateLimiter
from classvote.core.responses import success_response
from classvote.core.security import create_access_token, verify_password
from classvote.core.token_revocation import TokenRevocationList
from classvote.core.validation import (
    PasswordValidator,
    UsnValidator,
    sanitize_string,
    validate_branch,
    validate_email,
    validate_section,
)
from classvote.services import accounts as account_service
from classvote.services.accounts import active_admission_years, is_active_student
from classvote.services.repository import VotingRepository

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = get_logger(__name__)


class StudentLoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255, description="USN or email")
    password: str = Field(..., max_length=128)


class TeacherLoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., max_length=128)


class StudentRegisterRequest(BaseModel):
    """Student registration request with validation."""

    usn: str = Field(..., min_length=10, max_length=20)
    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    admission_year: int = Field(..., alias="admissionYear")
    branch: str = Field(..., max_length=50)
    section: str = Field(..., max_length=10)
    gender: str | None = Field(None, max_length=20)

    model_config = {"populate_by_name": True}

    @field_validator("usn")
    @classmethod
    def validate_usn(cls, v: str) -> str:
        v = v.strip().upper()
        is_valid, error = UsnValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = sanitize_string(v, max_length=255)
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return validate_email(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        is_valid, error = PasswordValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v

    @field_validator("admission_year")
    @classmethod
    def validate_admission_year(cls, v: int) -> int:
        years = active_admission_years()
        if v not in years:
            raise ValueError(
                f"Admission year must be between {years[0]} and {years[-1]}"
            )
        return v

    @field_validator("branch")
    @classmethod
    def check_branch(cls, v: str) -> str:
        return validate_branch(v)

    @field_validator("section")
    @classmethod
    def check_section(cls, v: str) -> str:
        return validate_section(v)

    @field_validator("gender")
    @classmethod
    def normalize_gender(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return sanitize_string(v, max_length=20).lower() or None


class TeacherRegisterRequest(BaseModel):
    """Teacher registration request with validation."""

    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = sanitize_string(v, max_length=255)
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters long")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return validate_email(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        is_valid, error = PasswordValidator.validate(v)
        if not is_valid:
            raise ValueError(error)
        return v


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


async def _check_not_locked(limiter: LoginRateLimiter, key: str) -> None:
    blocked, retry_after = await limiter.is_blocked(key)
    if blocked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many failed login attempts. Try again in {retry_after} seconds",
            headers={"Retry-After": str(retry_after)},
        )


async def _reject_login(
    limiter: LoginRateLimiter, key: str, identifier: str, role: str, ip: str | None
) -> None:
    await limiter.record(key)
    audit_logger.log_login_attempt(identifier, role, False, ip, "invalid credentials")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
    )


def _token_payload(account: dict, role: str) -> dict:
    token, _, expires_at = create_access_token(account["id"], role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": expires_at,
        "user": {
            "id": account["id"],
            "name": account["name"],
            "email": account["email"],
            "role": role,
        },
    }


def _require_self_registration() -> None:
    if not settings.SELF_REGISTRATION_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Registration is disabled"
        )


@router.post(
    "/register-student",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_require_self_registration)],
)
async def register_student(
    body: StudentRegisterRequest,
    repo: Annotated[VotingRepository, Depends(get_repository)],
):
    """
    Register a student account.

    A duplicate USN or email is rejected with 400. Only available when
    ``SELF_REGISTRATION_ENABLED`` is set.
    """
    student = await account_service.register_student(
        repo,
        usn=body.usn,
        name=body.name,
        email=body.email,
        password=body.password,
        admission_year=body.admission_year,
        branch=body.branch,
        section=body.section,
        gender=body.gender,
    )
    return success_response(data=student, message="Student registered successfully")


@router.post(
    "/register-teacher",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_require_self_registration)],
)
async def register_teacher(
    body: TeacherRegisterRequest,
    repo: Annotated[VotingRepository, Depends(get_repository)],
):
    """Register a teacher account. A duplicate email is rejected with 400."""
    teacher = await account_service.register_teacher(
        repo, name=body.name, email=body.email, password=body.password
    )
    return success_response(data=teacher, message="Teacher registered successfully")


@router.post("/student/login")
async def student_login(
    body: StudentLoginRequest,
    request: Request,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    limiter: Annotated[LoginRateLimiter, Depends(get_login_rate_limiter)],
):
    """Log a student in with USN or email and password."""
    identifier = body.identifier.strip().lower()
    key = f"student:{identifier}"
    ip = _client_ip(request)
    await _check_not_locked(limiter, key)

    student = await repo.get_student_by_login(identifier)
    if not student or not verify_password(body.password, student["password_hash"]):
        await _reject_login(limiter, key, identifier, "student", ip)

    if not is_active_student(student):
        audit_logger.log_login_attempt(identifier, "student", False, ip, "account expired")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This student account is no longer valid.",
        )

    await limiter.reset(key)
    audit_logger.log_login_attempt(identifier, "student", True, ip)
    return success_response(data=_token_payload(student, "student"), message="Login successful")


@router.post("/teacher/login")
async def teacher_login(
    body: TeacherLoginRequest,
    request: Request,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    limiter: Annotated[LoginRateLimiter, Depends(get_login_rate_limiter)],
):
    """Log a teacher in with email and password."""
    identifier = body.email.lower()
    key = f"teacher:{identifier}"
    ip = _client_ip(request)
    await _check_not_locked(limiter, key)

    teacher = await repo.get_teacher_by_email(identifier)
    if not teacher or not verify_password(body.password, teacher["password_hash"]):
        await _reject_login(limiter, key, identifier, "teacher", ip)

    await limiter.reset(key)
    audit_logger.log_login_attempt(identifier, "teacher", True, ip)
    return success_response(data=_token_payload(teacher, "teacher"), message="Login successful")


@router.post("/logout")
async def logout(
    current_user: Annotated[dict, Depends(get_current_user)],
    revocations: Annotated[TokenRevocationList, Depends(get_token_revocation)],
):
    """Revoke the caller's token until it would have expired."""
    expires_at = datetime.fromtimestamp(current_user["exp"], UTC)
    await revocations.revoke(current_user["jti"], expires_at)
    logger.info(f"{current_user['role']} logged out: {current_user['id']}")
    return success_response(message="Logged out successfully")


@router.get("/me")
async def me(current_user: Annotated[dict, Depends(get_current_user)]):
    return success_response(
        data={k: current_user[k] for k in ("id", "name", "email", "role")}
    )
