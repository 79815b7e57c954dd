from enum import Enum


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    WAITING_HUMAN = "waiting_human"
    COMPLETED = "completed"


# The bot moves active -> waiting_human and reopens completed -> active when
# the customer writes again. Everything else is an operator action.
VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.WAITING_HUMAN, ConversationStatus.COMPLETED],
    ConversationStatus.WAITING_HUMAN: [ConversationStatus.ACTIVE, ConversationStatus.COMPLETED],
    ConversationStatus.COMPLETED: [ConversationStatus.ACTIVE, ConversationStatus.WAITING_HUMAN],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def handover(current: ConversationStatus) -> ConversationStatus:
    """Bot hands the conversation to a human operator."""
    if current != ConversationStatus.ACTIVE:
        raise InvalidTransitionError(current, ConversationStatus.WAITING_HUMAN)
    return transition(current, ConversationStatus.WAITING_HUMAN)


def take_over(current: ConversationStatus) -> ConversationStatus:
    """Operator takes the conversation away from the bot."""
    return transition(current, ConversationStatus.WAITING_HUMAN)


def resume_bot(current: ConversationStatus) -> ConversationStatus:
    """Operator gives the conversation back to the bot."""
    return transition(current, ConversationStatus.ACTIVE)


def complete(current: ConversationStatus) -> ConversationStatus:
    """Operator closes the conversation."""
    return transition(current, ConversationStatus.COMPLETED)


def bot_may_reply(current: ConversationStatus) -> bool:
    """Only a conversation waiting for a human keeps the bot silent."""
    return current != ConversationStatus.WAITING_HUMAN


def reopen(current: ConversationStatus) -> ConversationStatus:
    """A new customer message brings a completed conversation back to the bot."""
    if current == ConversationStatus.COMPLETED:
        return transition(current, ConversationStatus.ACTIVE)
    return current
