from datetime import datetime, timezone
from typing import Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.schemas import LoginRequest, LoginResponse, SchoolInfo, UserInfo
from app.auth.security import create_access_token, verify_password
from app.core.exceptions import ServiceError
from app.core.models import School


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    # 1. Find user by email (case-insensitive)
    user_stmt = select(User).where(func.lower(User.email) == func.lower(payload.email))
    user_result = await db.execute(user_stmt)
    user: Optional[User] = user_result.scalar_one_or_none()
    if not user:
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    # 2. Verify password hash
    if not verify_password(payload.password, user.password_hash):
        raise ServiceError("Invalid credentials", status.HTTP_401_UNAUTHORIZED)

    # 3. Check user status
    if user.status != "ACTIVE":
        raise ServiceError("User is inactive", status.HTTP_403_FORBIDDEN)

    # 4. Fetch school status
    school_result = await db.execute(select(School).where(School.id == user.school_id))
    school: Optional[School] = school_result.scalar_one_or_none()
    if not school:
        raise ServiceError("School not found", status.HTTP_403_FORBIDDEN)
    if school.status != "ACTIVE":
        raise ServiceError("School is inactive", status.HTTP_403_FORBIDDEN)

    issued_at = datetime.now(timezone.utc)

    # 5. Generate access token (JWT)
    access_payload = {
        "sub": str(user.id),
        "user_id": str(user.id),
        "school_id": str(user.school_id),
        "role": user.role,
        "iat": int(issued_at.timestamp()),
    }
    access_token = create_access_token(subject=access_payload)

    return LoginResponse(
        access_token=access_token,
        user=UserInfo(id=user.id, name=user.full_name, email=user.email, role=user.role),
        school=SchoolInfo(id=school.id, slug=school.slug, name=school.name),
        issued_at=issued_at,
    )
