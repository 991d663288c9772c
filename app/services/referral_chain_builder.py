"""
Referral chain builder.

Walks the referrer links upward from a candidate referrer and returns
the ancestors that would receive rewards from a new referral.
"""

from typing import NamedTuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.repositories.user_repository import UserRepository
from app.services.referral_reward_calculator import REFERRAL_DEPTH
from app.utils.exceptions import CycleDetectedError, SelfReferralError


class ChainLink(NamedTuple):
    """Ancestor with its tier relative to the referred user."""

    user_id: int
    level: int


class ReferralChainBuilder:
    """Builds bounded referral chains inside the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize chain builder."""
        self.session = session
        self.user_repo = UserRepository(session)

    async def build_chain(
        self,
        referrer_id: int,
        applicant_id: int,
        max_tier: int = REFERRAL_DEPTH,
    ) -> list[ChainLink]:
        """
        Build referral chain for an applicant.

        Ancestors are read with a shared row lock. Walking continues past
        max_tier (without emitting links) so that a deeper loop back to
        the applicant is still refused.

        Args:
            referrer_id: Candidate direct referrer
            applicant_id: User applying the code
            max_tier: Number of tiers to return

        Returns:
            Links ordered from tier 1 upward

        Raises:
            SelfReferralError: Referrer is the applicant
            CycleDetectedError: Applicant is an ancestor of the referrer,
                or the stored chain already loops
        """
        scan_limit = max(settings.referral_ancestry_scan_limit, max_tier)

        chain: list[ChainLink] = []
        visited: set[int] = set()
        current_id: int | None = referrer_id
        hops = 0

        while current_id is not None:
            if current_id == applicant_id:
                if hops == 0:
                    raise SelfReferralError()
                logger.warning(
                    "Referral loop detected",
                    extra={
                        "applicant_id": applicant_id,
                        "referrer_id": referrer_id,
                        "depth": hops + 1,
                    },
                )
                raise CycleDetectedError()

            if current_id in visited or hops >= scan_limit:
                logger.warning(
                    "Referral ancestry is not a finite chain",
                    extra={
                        "applicant_id": applicant_id,
                        "referrer_id": referrer_id,
                        "stopped_at": current_id,
                        "hops": hops,
                    },
                )
                raise CycleDetectedError()

            exists, next_id = await self.user_repo.get_referrer_id(
                current_id, lock=True
            )
            if not exists:
                # Missing ancestor ends the chain
                break

            visited.add(current_id)
            hops += 1
            if hops <= max_tier:
                chain.append(ChainLink(user_id=current_id, level=hops))

            current_id = next_id

        logger.debug(
            "Referral chain built",
            extra={
                "applicant_id": applicant_id,
                "referrer_id": referrer_id,
                "chain_length": len(chain),
                "ancestors_scanned": hops,
            },
        )

        return chain
