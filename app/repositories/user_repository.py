"""
User repository.

Data access layer for User model.
"""

from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_by_telegram_id(
        self, telegram_id: int
    ) -> Optional[User]:
        """
        Get user by Telegram ID.

        Args:
            telegram_id: Telegram user ID

        Returns:
            User or None
        """
        return await self.get_by(telegram_id=telegram_id)

    async def get_by_referral_code(
        self, referral_code: str
    ) -> Optional[User]:
        """
        Get user by referral code.

        Args:
            referral_code: Normalized referral code

        Returns:
            User or None
        """
        return await self.get_by(referral_code=referral_code)

    async def get_fresh(self, user_id: int) -> Optional[User]:
        """Get user, overwriting any stale state held by the session."""
        return await self.get_by_id(user_id, fresh=True)

    async def get_for_update(
        self, user_id: int, shared: bool = False
    ) -> Optional[User]:
        """
        Get user with a row lock held until the transaction ends.

        Args:
            user_id: User ID
            shared: Take FOR SHARE instead of FOR UPDATE

        Returns:
            User or None
        """
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update(read=shared)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_referrer_id(
        self, user_id: int, lock: bool = True
    ) -> tuple[bool, int | None]:
        """
        Get user's referrer id without loading the full row.

        Args:
            user_id: User ID
            lock: Take a shared row lock

        Returns:
            Tuple of (user_exists, referrer_id)
        """
        stmt = select(User.id, User.referrer_id).where(User.id == user_id)
        if lock:
            stmt = stmt.with_for_update(read=True)

        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return False, None
        return True, row.referrer_id

    async def referral_code_exists(self, referral_code: str) -> bool:
        """Check if referral code is already taken."""
        return await self.exists(referral_code=referral_code)

    async def bind_referrer(
        self,
        user_id: int,
        referrer_id: int,
        referral_chain: list[int],
    ) -> bool:
        """
        Set user's referrer once (compare-and-set).

        Args:
            user_id: User being bound
            referrer_id: Direct referrer
            referral_chain: Ancestor ids, tier 1 first

        Returns:
            True if this call bound the user, False if already bound
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.referrer_id.is_(None))
            .values(referrer_id=referrer_id, referral_chain=referral_chain)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def add_referral_xp(self, user_id: int, amount: int) -> bool:
        """
        Atomically credit referral XP.

        Args:
            user_id: User ID
            amount: Points to add

        Returns:
            True if user exists and was credited
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                xp=User.xp + amount,
                total_referral_xp=User.total_referral_xp + amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def count_direct_referrals(self, user_id: int) -> int:
        """Count users directly referred by user."""
        return await self.count(referrer_id=user_id)

    async def get_direct_referrals(
        self, user_id: int
    ) -> List[User]:
        """
        Get users directly referred by user, newest first.

        Args:
            user_id: Referrer user ID

        Returns:
            List of users
        """
        stmt = (
            select(User)
            .where(User.referrer_id == user_id)
            .order_by(User.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_total_referral_xp(self) -> int:
        """Get platform-wide sum of referral XP."""
        stmt = select(func.coalesce(func.sum(User.total_referral_xp), 0))
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)

    async def get_referral_xp_by_user(self) -> dict[int, int]:
        """
        Get referral XP of users that have earned any.

        Returns:
            Dict of user id -> total_referral_xp
        """
        stmt = (
            select(User.id, User.total_referral_xp)
            .where(User.total_referral_xp > 0)
        )
        result = await self.session.execute(stmt)
        return {user_id: int(total) for user_id, total in result.all()}
