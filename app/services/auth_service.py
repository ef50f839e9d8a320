from typing import Optional
from sqlalchemy import select
from app.database.connection import AsyncSessionLocal
from app.models.user import User
from app.utils.security import verify_password


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "company": user.company,
        "role": user.role,
        "is_active": user.is_active,
    }


async def authenticate_user(email: str, password: str) -> Optional[dict]:
    """Authenticate a user and return user data if valid"""
    async with AsyncSessionLocal() as session:
        stmt = select(User).where(User.email == email.lower())
        result = await session.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not user.is_active:
            return None

        if not verify_password(password, user.hashed_password):
            return None

        return _user_to_dict(user)


async def get_user_by_id(user_id: str) -> Optional[dict]:
    """Get user by ID"""
    async with AsyncSessionLocal() as session:
        user = await session.get(User, user_id)
        if not user:
            return None
        return _user_to_dict(user)
