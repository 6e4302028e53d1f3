"""
Storage interface for the progress engine

Everything that reads or writes students, activity records, goal ledgers,
awards, likes and the mailbox goes through a ProgressStore. Two backends
implement it: PostgresProgressStore (production) and InMemoryProgressStore
(tests, local development).

Multi-row updates run inside run_transaction(handler). The handler receives a
StoreTransaction; if the backend reports a write conflict the whole handler is
re-run, so handlers must be free of side effects outside the transaction.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar

from pungpung.config import TRANSACTION_MAX_ATTEMPTS
from pungpung.exceptions import TransactionConflictError
from pungpung.models.activity import ActivityRecord
from pungpung.models.exercise import Exercise
from pungpung.models.goal import GoalLedgerEntry
from pungpung.models.mailbox import MailboxMessage, MissionStatus
from pungpung.models.student import ManitoAssignment, Student

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Backoff between conflicting attempts (seconds)
CONFLICT_BASE_DELAY = 0.01
CONFLICT_MAX_DELAY = 0.2


class StoreTransaction(ABC):
    """Operations available inside a single storage transaction"""

    @abstractmethod
    async def lock_student(self, student_id: str) -> Optional[Student]:
        """Read a student and hold a write lock on it until commit"""

    @abstractmethod
    async def increment_xp(self, student_id: str, delta: int) -> int:
        """Atomically add delta to total_xp (floored at 0); returns the new total"""

    @abstractmethod
    async def record_award(self, student_id: str, day: date, exercise_id: str, amount: int) -> bool:
        """Insert an award row; False if (student, day, exercise) was already awarded"""

    @abstractmethod
    async def get_weekly_likers(self, target_id: str, week_key: str) -> set[str]:
        """Likers of target for the week"""

    @abstractmethod
    async def set_weekly_likers(self, target_id: str, week_key: str, likers: set[str]) -> None:
        """Replace the like set for (target, week)"""

    @abstractmethod
    async def has_sent_mission(self, sender_id: str, day: date) -> bool:
        """Whether sender already sent a mission on day"""

    @abstractmethod
    async def mark_mission_sent(self, sender_id: str, day: date) -> None:
        """Set the sender's mission flag for day"""

    @abstractmethod
    async def add_message(self, message: MailboxMessage) -> None:
        """Append a message to the recipient's mailbox"""

    @abstractmethod
    async def get_message_for_update(self, recipient_id: str, message_id: str) -> Optional[MailboxMessage]:
        """Read one of the recipient's messages and lock it"""

    @abstractmethod
    async def set_mission_status(self, recipient_id: str, message_id: str, status: MissionStatus) -> None:
        """Update a mission's status"""


class ProgressStore(ABC):
    """Persistent storage for the progress engine"""

    def __init__(self, max_attempts: int = TRANSACTION_MAX_ATTEMPTS):
        self.max_attempts = max_attempts

    async def run_transaction(
        self,
        handler: Callable[[StoreTransaction], Awaitable[T]],
        operation: str = "transaction"
    ) -> T:
        """
        Run handler inside one transaction, retrying on write conflicts.

        Args:
            handler: Async callable receiving a StoreTransaction
            operation: Name used in logs and errors

        Returns:
            Whatever handler returns from the attempt that committed

        Raises:
            TransactionConflictError: if every attempt conflicted
            Any exception raised by handler (the transaction is rolled back)
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._execute_transaction(handler)
            except TransactionConflictError as e:
                if attempt == self.max_attempts:
                    raise TransactionConflictError(
                        message=f"{operation} conflicted on all {attempt} attempts",
                        attempts=attempt,
                        operation=operation,
                        cause=e
                    )
                delay = min(CONFLICT_BASE_DELAY * (2 ** (attempt - 1)), CONFLICT_MAX_DELAY)
                delay = random.uniform(0, delay)
                logger.info(
                    f"[TX] {operation} conflicted (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.3f}s"
                )
                await asyncio.sleep(delay)

        raise RuntimeError("unreachable")

    async def open(self) -> None:
        """Acquire backend resources (connection pools)"""

    async def close(self) -> None:
        """Release backend resources"""

    async def health_check(self) -> str:
        """Backend status for the health endpoint: 'connected' or 'disconnected'"""
        return "connected"

    @abstractmethod
    async def _execute_transaction(self, handler: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        """Run handler once in a transaction; raise TransactionConflictError on conflict"""

    # Students

    @abstractmethod
    async def create_student(self, student: Student) -> Student: ...

    @abstractmethod
    async def get_student(self, student_id: str) -> Optional[Student]: ...

    @abstractmethod
    async def list_students(self, class_name: Optional[str] = None) -> list[Student]: ...

    @abstractmethod
    async def delete_student(self, student_id: str) -> bool:
        """Delete a student with all dependent records; False if absent"""

    @abstractmethod
    async def update_pin(self, student_id: str, pin: str) -> None: ...

    @abstractmethod
    async def update_avatar(self, student_id: str, avatar_seed: str) -> None: ...

    # Exercise catalog

    @abstractmethod
    async def list_custom_exercises(self) -> list[Exercise]: ...

    @abstractmethod
    async def save_custom_exercise(self, exercise: Exercise) -> Exercise: ...

    @abstractmethod
    async def delete_custom_exercise(self, exercise_id: str) -> bool: ...

    # Activity records

    @abstractmethod
    async def add_activity(self, record: ActivityRecord) -> ActivityRecord: ...

    @abstractmethod
    async def attach_photo(self, record_id: str, photo_url: str) -> None: ...

    @abstractmethod
    async def list_activities(
        self,
        student_id: str,
        since: Optional[date] = None,
        until: Optional[date] = None
    ) -> list[ActivityRecord]:
        """Student's records with since <= recorded_on <= until, oldest first"""

    @abstractmethod
    async def list_class_activities(self, class_name: str, since: Optional[date] = None) -> list[ActivityRecord]: ...

    # Goal ledger

    @abstractmethod
    async def upsert_goal_day(self, student_id: str, entry: GoalLedgerEntry) -> None:
        """Write exactly one (student, day) ledger row"""

    @abstractmethod
    async def get_goal_days(self, student_id: str) -> dict[date, GoalLedgerEntry]: ...

    @abstractmethod
    async def get_goal_day(self, student_id: str, day: date) -> Optional[GoalLedgerEntry]: ...

    # Awards

    @abstractmethod
    async def get_awarded(self, student_id: str, day: date) -> set[str]:
        """Exercise IDs already paid for (student, day)"""

    # Likes

    @abstractmethod
    async def get_weekly_likes(self, target_id: str) -> dict[str, set[str]]:
        """week_key -> likers for target"""

    # Mailbox

    @abstractmethod
    async def list_messages(self, recipient_id: str) -> list[MailboxMessage]:
        """Recipient's mailbox, newest first"""

    @abstractmethod
    async def mark_read(self, recipient_id: str, message_id: str) -> bool: ...

    # Secret friends

    @abstractmethod
    async def save_manito_assignment(self, assignment: ManitoAssignment) -> None: ...

    @abstractmethod
    async def get_manito_assignment(self, class_name: str) -> Optional[ManitoAssignment]: ...
