# app/users/repository.py

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.users.models import User


class UserRepository:
    """
    Read access to operator accounts for authentication.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Fetch a user by email address."""
        stmt = select(User).options(selectinload(User.roles)).where(User.email_address == email)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
