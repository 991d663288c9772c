"""
User service.

Participant store adapter for the referral ledger.
"""

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.models.user import User
from app.repositories.user_repository import UserRepository


class UserService:
    """
    User service.

    Handles first-contact registration and referral links.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize user service.

        Args:
            session: Database session
        """
        self.session = session
        self.user_repo = UserRepository(session)

    async def get_by_telegram_id(
        self, telegram_id: int
    ) -> User | None:
        """
        Get user by Telegram ID.

        Args:
            telegram_id: Telegram user ID

        Returns:
            User or None
        """
        return await self.user_repo.get_by_telegram_id(
            telegram_id
        )

    async def get_or_create_user(
        self, telegram_id: int, username: str | None = None
    ) -> User:
        """
        Get user by Telegram ID, creating it on first contact.

        New users start unbound, without a referral code and with
        zero XP.

        Args:
            telegram_id: Telegram user ID
            username: Telegram username (optional)

        Returns:
            Existing or created user
        """
        existing = await self.user_repo.get_by_telegram_id(telegram_id)
        if existing:
            if username and existing.username != username:
                existing.username = username
                await self.session.commit()
            return existing

        try:
            user = await self.user_repo.create(
                telegram_id=telegram_id,
                username=username,
                referral_chain=[],
                xp=0,
                total_referral_xp=0,
            )
            await self.session.commit()
        except IntegrityError:
            # Created concurrently by another request
            await self.session.rollback()
            user = await self.user_repo.get_by_telegram_id(telegram_id)
            if user is None:
                raise
            return user

        logger.info(
            "User registered",
            extra={"user_id": user.id, "telegram_id": telegram_id},
        )

        return user

    def generate_referral_link(self, code: str) -> str:
        """
        Generate referral link for a code.

        Args:
            code: Referral code

        Returns:
            Referral link in format: https://t.me/{bot}?start=ref_{code}
        """
        return (
            f"https://t.me/{settings.telegram_bot_username}"
            f"?start=ref_{code}"
        )
