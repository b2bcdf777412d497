from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import User


class UserService:
    """Read-only access to users for the scheduled scans and the auth boundary."""

    def __init__(self, db_session: Session):
        self.db = db_session

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    async def get_active_user(self, user_id: str) -> Optional[User]:
        user = self.db.get(User, user_id)
        return user if user is not None and user.is_active else None

    async def find_all_active_users(self) -> List[User]:
        result = self.db.execute(
            select(User).where(User.is_active == True).order_by(User.created_at)
        )
        return list(result.scalars().all())
