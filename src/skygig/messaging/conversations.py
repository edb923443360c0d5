"""One-to-one conversations, message delivery and read state."""

from typing import Callable, Dict, List, Optional

from skygig.core.clock import Clock, IdGenerator
from skygig.core.errors import Forbidden, InvalidState, NotFound, ValidationError
from skygig.core.events import EventBus, MessageSent
from skygig.core.locking import LockRegistry
from skygig.core.models import Conversation, Message, MessageStatus
from skygig.utils.logging import get_logger

logger = get_logger(__name__)

ContactPolicy = Callable[[str], bool]


def always_contactable(user_id: str) -> bool:
    return True


def advance_status(message: Message, target: MessageStatus) -> Message:
    """Return ``message`` moved forward to ``target``; never moves backwards."""
    if target.rank <= message.status.rank:
        return message
    return message.model_copy(update={"status": target})


class ConversationStore:
    """Owns conversations and their messages.

    Unread counts are not stored: for participant P they are the number of
    messages from the other participant that P has not read yet.
    """

    def __init__(
        self,
        bus: EventBus,
        clock: Clock,
        ids: IdGenerator,
        is_contactable: Optional[ContactPolicy] = None
    ):
        self.logger = logger.bind(component="conversation_store")
        self.bus = bus
        self.clock = clock
        self.ids = ids
        self.is_contactable = is_contactable or always_contactable

        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._by_key: Dict[str, str] = {}
        self._locks = LockRegistry("conversations")
        self._key_locks = LockRegistry("conversation_keys")

    @staticmethod
    def _key(job_id: str, participant_a: str, participant_b: str) -> str:
        low, high = sorted((participant_a, participant_b))
        return f"{job_id}\x1f{low}\x1f{high}"

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFound("conversation", conversation_id)
        return conversation

    @staticmethod
    def _require_participant(conversation: Conversation, user_id: str) -> None:
        if user_id not in conversation.participant_ids:
            raise Forbidden(f"user {user_id} is not a participant of conversation {conversation.id}")

    def _unread_for(self, conversation_id: str, participant_id: str) -> int:
        return sum(
            1 for m in self._messages.get(conversation_id, ())
            if m.sender_id != participant_id and m.status != MessageStatus.READ
        )

    def _view(self, conversation: Conversation) -> Conversation:
        return conversation.model_copy(deep=True, update={
            "unread_count": {p: self._unread_for(conversation.id, p) for p in conversation.participant_ids}
        })

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, conversation_id: str, caller_id: str) -> Conversation:
        conversation = self._require(conversation_id)
        self._require_participant(conversation, caller_id)
        return self._view(conversation)

    def messages(self, conversation_id: str, caller_id: str) -> List[Message]:
        """Messages in the order both participants see them."""
        conversation = self._require(conversation_id)
        self._require_participant(conversation, caller_id)
        messages = list(self._messages.get(conversation_id, ()))
        messages.sort(key=lambda m: (m.created_at, m.seq))
        return [m.model_copy() for m in messages]

    def unread_count(self, conversation_id: str, participant_id: str) -> int:
        conversation = self._require(conversation_id)
        self._require_participant(conversation, participant_id)
        return self._unread_for(conversation_id, participant_id)

    def unread_total(self, participant_id: str) -> int:
        return sum(
            self._unread_for(c.id, participant_id)
            for c in list(self._conversations.values())
            if participant_id in c.participant_ids
        )

    def list_for(self, participant_id: str, query: Optional[str] = None) -> List[Conversation]:
        """Inbox of a participant: pinned first, then most recent activity."""
        conversations = [
            self._view(c) for c in list(self._conversations.values())
            if participant_id in c.participant_ids
        ]
        if query and query.strip():
            q = query.strip().lower()
            conversations = [
                c for c in conversations
                if q in c.other_participant(participant_id).lower()
                or q in (c.last_message_text or "").lower()
            ]
        conversations.sort(key=lambda c: c.last_at or c.created_at, reverse=True)
        conversations.sort(key=lambda c: not c.pinned.get(participant_id, False))
        return conversations

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def open_or_get(self, job_id: str, participant_a: str, participant_b: str) -> Conversation:
        """Return the conversation about ``job_id`` between the two users, creating it once."""
        if participant_a == participant_b:
            raise ValidationError("A conversation needs two different participants", {"participant_ids": "duplicate"})

        key = self._key(job_id, participant_a, participant_b)
        with self._key_locks.hold(key):
            existing = self._by_key.get(key)
            if existing is not None:
                return self._view(self._conversations[existing])

            conversation = Conversation(
                id=self.ids.new_id("conv"),
                job_id=job_id,
                participant_ids=[participant_a, participant_b],
                created_at=self.clock.now(),
                pinned={participant_a: False, participant_b: False}
            )
            self._messages[conversation.id] = []
            self._conversations[conversation.id] = conversation
            self._by_key[key] = conversation.id

        self.logger.info("Conversation opened", conversation_id=conversation.id, job_id=job_id)
        return self._view(conversation)

    def send(self, conversation_id: str, sender_id: str, text: str) -> Message:
        """Append a message from ``sender_id``.

        The message starts as sent and is delivered right away when the
        recipient is contactable. Notification fan-out happens through the
        event bus and does not hold up the sender.
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text is empty", {"text": "must not be empty"})

        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            self._require_participant(conversation, sender_id)
            if conversation.closed:
                raise InvalidState(f"conversation {conversation_id} is closed")

            now = self.clock.now()
            recipient_id = conversation.other_participant(sender_id)
            message = Message(
                id=self.ids.new_id("msg"),
                conversation_id=conversation_id,
                sender_id=sender_id,
                text=text,
                created_at=now,
                seq=self.ids.next_seq(conversation_id)
            )
            if self.is_contactable(recipient_id):
                message = advance_status(message, MessageStatus.DELIVERED)

            self._messages[conversation_id].append(message)
            self._conversations[conversation_id] = conversation.model_copy(update={
                "last_message_id": message.id,
                "last_message_text": text,
                "last_at": now,
            })
            self.bus.publish(MessageSent(
                aggregate_id=conversation_id,
                occurred_at=now,
                message_id=message.id,
                conversation_id=conversation_id,
                job_id=conversation.job_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                text=text
            ))
        self.bus.flush()

        self.logger.info(
            "Message sent",
            conversation_id=conversation_id,
            message_id=message.id,
            status=message.status.value
        )
        return message.model_copy()

    def _promote(self, conversation_id: str, reader_id: str, target: MessageStatus) -> int:
        """Advance every message addressed to ``reader_id``; returns how many changed."""
        changed = 0
        messages = self._messages[conversation_id]
        for index, message in enumerate(messages):
            if message.sender_id == reader_id:
                continue
            advanced = advance_status(message, target)
            if advanced is not message:
                messages[index] = advanced
                changed += 1
        return changed

    def mark_delivered(self, conversation_id: str, recipient_id: str) -> int:
        """Deliver messages still waiting for ``recipient_id`` to become contactable."""
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            self._require_participant(conversation, recipient_id)
            changed = self._promote(conversation_id, recipient_id, MessageStatus.DELIVERED)

        if changed:
            self.logger.info("Messages delivered", conversation_id=conversation_id, recipient_id=recipient_id, count=changed)
        return changed

    def mark_read(self, conversation_id: str, reader_id: str) -> Conversation:
        """Mark everything the other participant sent as read by ``reader_id``."""
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            self._require_participant(conversation, reader_id)
            changed = self._promote(conversation_id, reader_id, MessageStatus.READ)
            view = self._view(conversation)

        if changed:
            self.logger.info("Messages read", conversation_id=conversation_id, reader_id=reader_id, count=changed)
        return view

    def set_pinned(self, conversation_id: str, participant_id: str, pinned: bool) -> Conversation:
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            self._require_participant(conversation, participant_id)
            flags = dict(conversation.pinned)
            flags[participant_id] = pinned
            conversation = conversation.model_copy(update={"pinned": flags})
            self._conversations[conversation_id] = conversation
            return self._view(conversation)

    def close(self, conversation_id: str, caller_id: str) -> Conversation:
        """Stop accepting new messages. Closing twice is a no-op."""
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            self._require_participant(conversation, caller_id)
            if not conversation.closed:
                conversation = conversation.model_copy(update={"closed": True})
                self._conversations[conversation_id] = conversation
                self.logger.info("Conversation closed", conversation_id=conversation_id, closed_by=caller_id)
            return self._view(conversation)
