"""
Secret-Friend Mailbox

Students anonymously cheer on their secret friend (manito) or send them a
mission. Missions are limited to one per sender per day and pay the
recipient MISSION_BONUS_XP (10) when completed.

Mission lifecycle: pending -> completed, exactly once. Completion is the only
thing that pays the bonus, and the status change and XP increment commit in
one transaction, so completing twice never pays twice.
"""

import logging
from typing import Optional
from uuid import UUID

from pungpung.config import MISSION_BONUS_XP
from pungpung.db.store import ProgressStore, StoreTransaction
from pungpung.exceptions import (
    InvalidTransitionError,
    MissionRateLimitError,
    RecordNotFoundError,
    ValidationError,
)
from pungpung.models.mailbox import MailboxMessage, MessageType, MissionStatus
from pungpung.resilience.metrics import record_mailbox_message, record_xp_change
from pungpung.utils.datetime_helpers import Clock

logger = logging.getLogger(__name__)


def _message_not_found(recipient_id: str, message_id: str) -> RecordNotFoundError:
    return RecordNotFoundError(
        f"Message {message_id} not found in mailbox of {recipient_id}",
        record_type="MailboxMessage",
        record_id=message_id,
        student_id=recipient_id,
        operation="complete_mission"
    )


def _is_message_id(message_id: str) -> bool:
    try:
        UUID(message_id)
    except ValueError:
        return False
    return True


async def send_message(
    store: ProgressStore,
    clock: Clock,
    sender_id: str,
    recipient_id: str,
    message_type: MessageType,
    content: str
) -> MailboxMessage:
    """
    Deliver a cheer or mission to the recipient's mailbox

    Cheers are always delivered. A mission first checks the sender's
    mission flag for today; the message and the flag are written in the same
    transaction so a rejected mission leaves nothing behind.

    Raises:
        ValidationError: empty or overlong content, or sending to yourself
        RecordNotFoundError: sender or recipient does not exist
        MissionRateLimitError: sender already sent a mission today
    """
    if sender_id == recipient_id:
        raise ValidationError(
            "Cannot send a message to yourself",
            field="recipient_id",
            value=recipient_id,
            student_id=sender_id,
            operation="send_message"
        )

    try:
        message = MailboxMessage(
            sender_id=sender_id,
            recipient_id=recipient_id,
            type=message_type,
            content=content,
            created_at=clock.now()
        )
    except ValueError as e:
        raise ValidationError(
            f"Invalid message: {e}",
            field="content",
            student_id=sender_id,
            operation="send_message"
        )

    today = clock.today()

    async def handler(tx: StoreTransaction) -> MailboxMessage:
        # Fixed lock order so crossing sends cannot deadlock
        for student_id in sorted((sender_id, recipient_id)):
            if await tx.lock_student(student_id) is None:
                raise RecordNotFoundError(
                    f"Student {student_id} not found",
                    record_type="Student",
                    record_id=student_id,
                    operation="send_message"
                )

        if message_type == MessageType.MISSION:
            if await tx.has_sent_mission(sender_id, today):
                raise MissionRateLimitError(
                    f"Student {sender_id} already sent a mission on {today}",
                    day=today.isoformat(),
                    student_id=sender_id,
                    operation="send_message"
                )
            await tx.mark_mission_sent(sender_id, today)

        await tx.add_message(message)
        return message

    try:
        sent = await store.run_transaction(handler, operation="send_message")
    except MissionRateLimitError:
        record_mailbox_message(message_type.value, "rate_limited")
        raise

    record_mailbox_message(message_type.value, "sent")
    logger.info(f"Delivered {message_type.value} {sent.id} from {sender_id} to {recipient_id}")
    return sent


async def complete_mission(
    store: ProgressStore,
    recipient_id: str,
    message_id: str,
    bonus_xp: int = MISSION_BONUS_XP
) -> dict:
    """
    Mark a pending mission completed and pay the bonus

    Completing an already-completed mission is a no-op.

    Returns:
        {
            'message': MailboxMessage (after the call),
            'completed': bool (this call completed it),
            'xp_awarded': int,
            'new_total_xp': int
        }

    Raises:
        RecordNotFoundError: the message is not in the recipient's mailbox
        InvalidTransitionError: the message is a cheer, not a mission
    """
    if not _is_message_id(message_id):
        raise _message_not_found(recipient_id, message_id)

    async def handler(tx: StoreTransaction) -> dict:
        recipient = await tx.lock_student(recipient_id)
        if recipient is None:
            raise RecordNotFoundError(
                f"Student {recipient_id} not found",
                record_type="Student",
                record_id=recipient_id,
                operation="complete_mission"
            )

        message = await tx.get_message_for_update(recipient_id, message_id)
        if message is None:
            raise _message_not_found(recipient_id, message_id)

        if message.type != MessageType.MISSION:
            raise InvalidTransitionError(
                f"Message {message_id} is a {message.type.value}, not a mission",
                current_state=message.type.value,
                student_id=recipient_id,
                operation="complete_mission"
            )

        if message.mission_status == MissionStatus.COMPLETED:
            return {
                "message": message,
                "completed": False,
                "xp_awarded": 0,
                "new_total_xp": recipient.total_xp,
            }

        await tx.set_mission_status(recipient_id, message_id, MissionStatus.COMPLETED)
        new_total = await tx.increment_xp(recipient_id, bonus_xp)
        return {
            "message": message.model_copy(update={"mission_status": MissionStatus.COMPLETED}),
            "completed": True,
            "xp_awarded": bonus_xp,
            "new_total_xp": new_total,
        }

    result = await store.run_transaction(handler, operation="complete_mission")

    if result["completed"]:
        record_xp_change("mission", bonus_xp)
        logger.info(
            f"Student {recipient_id} completed mission {message_id}: "
            f"+{bonus_xp} XP, total {result['new_total_xp']} XP"
        )
    else:
        logger.info(f"Mission {message_id} was already completed, no bonus paid")
    return result


async def get_mailbox(store: ProgressStore, recipient_id: str) -> list[MailboxMessage]:
    """Recipient's messages, newest first"""
    return await store.list_messages(recipient_id)


async def mark_read(store: ProgressStore, recipient_id: str, message_id: str) -> None:
    """
    Raises:
        RecordNotFoundError: the message is not in the recipient's mailbox
    """
    if not _is_message_id(message_id) or not await store.mark_read(recipient_id, message_id):
        raise RecordNotFoundError(
            f"Message {message_id} not found in mailbox of {recipient_id}",
            record_type="MailboxMessage",
            record_id=message_id,
            student_id=recipient_id,
            operation="mark_read"
        )


async def secret_friend_of(store: ProgressStore, student_id: str) -> Optional[str]:
    """ID of the classmate this student secretly supports, if assigned"""
    student = await store.get_student(student_id)
    if student is None:
        raise RecordNotFoundError(
            f"Student {student_id} not found",
            record_type="Student",
            record_id=student_id,
            operation="secret_friend_of"
        )
    assignment = await store.get_manito_assignment(student.class_name)
    if assignment is None:
        return None
    return assignment.pairs.get(student_id)
