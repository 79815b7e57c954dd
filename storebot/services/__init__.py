from storebot.services.conversation_service import (
    get_or_create_contact,
    get_or_create_conversation,
)
from storebot.services.message_service import save_message
from storebot.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    complete,
    handover,
    resume_bot,
    take_over,
    transition,
)
