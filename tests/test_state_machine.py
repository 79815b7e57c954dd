import pytest

from storebot.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    bot_may_reply,
    can_transition,
    complete,
    handover,
    reopen,
    resume_bot,
    take_over,
    transition,
)


class TestValidTransitions:
    def test_active_to_waiting_human(self):
        assert transition(ConversationStatus.ACTIVE, ConversationStatus.WAITING_HUMAN) == ConversationStatus.WAITING_HUMAN

    def test_waiting_human_to_active(self):
        assert transition(ConversationStatus.WAITING_HUMAN, ConversationStatus.ACTIVE) == ConversationStatus.ACTIVE

    @pytest.mark.parametrize("status", [ConversationStatus.ACTIVE, ConversationStatus.WAITING_HUMAN])
    def test_any_open_status_can_complete(self, status):
        assert can_transition(status, ConversationStatus.COMPLETED)

    def test_completed_can_be_reopened(self):
        assert transition(ConversationStatus.COMPLETED, ConversationStatus.ACTIVE) == ConversationStatus.ACTIVE


class TestInvalidTransitions:
    def test_same_status(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConversationStatus.ACTIVE, ConversationStatus.ACTIVE)

    def test_error_message_names_both_statuses(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(ConversationStatus.COMPLETED, ConversationStatus.COMPLETED)
        assert "completed -> completed" in str(exc_info.value)


class TestHelperFunctions:
    def test_handover_from_active(self):
        assert handover(ConversationStatus.ACTIVE) == ConversationStatus.WAITING_HUMAN

    def test_handover_only_from_active(self):
        with pytest.raises(InvalidTransitionError):
            handover(ConversationStatus.COMPLETED)

    def test_take_over_from_active(self):
        assert take_over(ConversationStatus.ACTIVE) == ConversationStatus.WAITING_HUMAN

    def test_take_over_twice_fails(self):
        with pytest.raises(InvalidTransitionError):
            take_over(ConversationStatus.WAITING_HUMAN)

    def test_resume_bot(self):
        assert resume_bot(ConversationStatus.WAITING_HUMAN) == ConversationStatus.ACTIVE

    def test_complete(self):
        assert complete(ConversationStatus.WAITING_HUMAN) == ConversationStatus.COMPLETED

    def test_bot_silent_only_while_waiting_for_human(self):
        assert bot_may_reply(ConversationStatus.ACTIVE) is True
        assert bot_may_reply(ConversationStatus.WAITING_HUMAN) is False
        assert bot_may_reply(ConversationStatus.COMPLETED) is True

    def test_reopen_completed(self):
        assert reopen(ConversationStatus.COMPLETED) == ConversationStatus.ACTIVE

    def test_reopen_leaves_active_alone(self):
        assert reopen(ConversationStatus.ACTIVE) == ConversationStatus.ACTIVE
