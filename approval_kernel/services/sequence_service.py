"""
SequenceService -- gap-tolerant, collision-free human-readable numbers.

Responsibility:
    Hands out ``APR-000001`` style request numbers and per-document-type
    numbers (``PR-000003``, ``LEAVE-000001``).  Each sequence is one row in
    ``sequence_counters``; allocating a number locks that row for the rest
    of the caller's transaction.

Architecture position:
    Kernel > Services.  Used by RequestCoordinator and DocumentService.

Invariants enforced:
    - Two concurrent submissions never receive the same number: the counter
      row is read ``FOR UPDATE`` and bumped in place.
    - Numbers become visible only when the caller commits; a rollback
      releases the value.

Failure modes:
    - A first-use race on the counter row surfaces as IntegrityError inside
      a SAVEPOINT; the loser re-reads the winner's row and continues.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """Allocates numbers inside the caller's transaction; never commits."""

    APPROVAL_REQUEST = "approval_request"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def document_sequence(doc_type: str) -> str:
        return f"document_{doc_type.lower()}"

    def _locked_counter(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, name: str) -> SequenceCounter:
        """Insert a zeroed counter, or pick up the one a concurrent caller just inserted."""
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            counter = self._locked_counter(name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter

    def next_value(self, sequence_name: str) -> int:
        """Bump the named counter and return the new value (first call returns 1)."""
        counter = self._locked_counter(sequence_name) or self._create_counter(sequence_name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_number(self, sequence_name: str, prefix: str, width: int = 6) -> str:
        return f"{prefix}-{self.next_value(sequence_name):0{width}d}"

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a sequence never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
