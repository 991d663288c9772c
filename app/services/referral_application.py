"""
Referral application workflow.

Binds a user to the owner of a referral code:
unbound -> validating -> chain_building -> persisting -> bound,
or rejected with a reason from any non-terminal state.
"""

from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ReferralApplicationState, ReferralRejectReason
from app.repositories.referral_repository import ReferralRepository
from app.repositories.user_repository import UserRepository
from app.services.referral_chain_builder import ChainLink, ReferralChainBuilder
from app.utils.exceptions import (
    AlreadyBoundError,
    CodeNotFoundError,
    MalformedCodeError,
    ParticipantNotFoundError,
    ReferralError,
    SelfReferralError,
    TransactionAbortedError,
)
from app.utils.referral_codes import (
    is_well_formed_referral_code,
    normalize_referral_code,
)


@dataclass
class ApplyCodeResult:
    """Outcome of a referral code application."""

    success: bool
    state: ReferralApplicationState
    reason: ReferralRejectReason | None = None
    message: str | None = None
    referrer_id: int | None = None
    chain: list[ChainLink] = field(default_factory=list)


class ReferralApplication:
    """
    One attempt to apply a referral code.

    All reads that decide the outcome and all writes happen in the
    session's current transaction, which is committed on success and
    rolled back on any failure.
    """

    def __init__(
        self, session: AsyncSession, user_id: int, code: object
    ) -> None:
        """
        Initialize workflow.

        Args:
            session: Database session (one unit of work)
            user_id: Applicant user ID
            code: Raw referral code as received
        """
        self.session = session
        self.user_id = user_id
        self.raw_code = code
        self.state = ReferralApplicationState.UNBOUND
        self.reason: ReferralRejectReason | None = None
        self.user_repo = UserRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.chain_builder = ReferralChainBuilder(session)

    def _transition(self, state: ReferralApplicationState) -> None:
        logger.debug(
            f"Referral application {self.state} -> {state}",
            extra={"user_id": self.user_id},
        )
        self.state = state

    async def run(self) -> ApplyCodeResult:
        """
        Run the workflow once.

        Returns:
            ApplyCodeResult (bound or rejected)

        Raises:
            TransactionAbortedError: Conflicting concurrent write,
                the caller may retry with a fresh attempt
        """
        try:
            referrer_id, chain = await self._execute()
        except TransactionAbortedError:
            await self.session.rollback()
            self._reject(TransactionAbortedError())
            raise
        except ReferralError as e:
            await self.session.rollback()
            return self._reject(e)
        except (OperationalError, IntegrityError) as e:
            await self.session.rollback()
            logger.warning(
                f"Referral application aborted: {e}",
                extra={"user_id": self.user_id, "state": self.state.value},
            )
            self._reject(TransactionAbortedError())
            raise TransactionAbortedError(str(e.orig or e)) from e
        except Exception:
            await self.session.rollback()
            logger.exception(
                "Unexpected error applying referral code",
                extra={"user_id": self.user_id, "state": self.state.value},
            )
            raise

        self._transition(ReferralApplicationState.BOUND)

        logger.info(
            "Referral code applied",
            extra={
                "user_id": self.user_id,
                "referrer_id": referrer_id,
                "levels_created": len(chain),
            },
        )

        return ApplyCodeResult(
            success=True,
            state=self.state,
            message="Referral code applied successfully",
            referrer_id=referrer_id,
            chain=chain,
        )

    async def _execute(self) -> tuple[int, list[ChainLink]]:
        self._transition(ReferralApplicationState.VALIDATING)

        if not is_well_formed_referral_code(self.raw_code):
            raise MalformedCodeError()
        code = normalize_referral_code(self.raw_code)

        applicant = await self.user_repo.get_for_update(self.user_id)
        if applicant is None:
            raise ParticipantNotFoundError()

        if applicant.referrer_id is not None:
            raise AlreadyBoundError()

        referrer = await self.user_repo.get_by_referral_code(code)
        if referrer is None:
            raise CodeNotFoundError()

        if referrer.id == applicant.id:
            raise SelfReferralError()

        self._transition(ReferralApplicationState.CHAIN_BUILDING)
        chain = await self.chain_builder.build_chain(
            referrer_id=referrer.id, applicant_id=applicant.id
        )

        self._transition(ReferralApplicationState.PERSISTING)
        await self.referral_repo.create_edges(chain, applicant.id, code)

        bound = await self.user_repo.bind_referrer(
            applicant.id,
            referrer.id,
            [link.user_id for link in chain],
        )
        if not bound:
            raise AlreadyBoundError()

        await self.session.commit()

        return referrer.id, chain

    def _reject(self, error: ReferralError) -> ApplyCodeResult:
        self._transition(ReferralApplicationState.REJECTED)
        self.reason = error.reason

        logger.info(
            f"Referral code rejected: {error.reason}",
            extra={"user_id": self.user_id, "reason": error.reason.value},
        )

        return ApplyCodeResult(
            success=False,
            state=self.state,
            reason=error.reason,
            message=error.message,
        )
