import asyncio
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest

from storebot.config import settings
from storebot.models import Contact, Conversation
from storebot.services import ai_service
from storebot.services.ai_service import BotReply
from storebot.services.debounce_service import BufferedTurn, MessageDebouncer
from storebot.services.knowledge_service import KnowledgeContext
from storebot.services.llm import LLMResponse
from storebot.services.turn_service import TOKEN_LIMIT_MESSAGE, process_buffered_turn


def _db(conversation, contact):
    db = Mock()

    def query(model):
        chain = Mock()
        row = {Conversation: conversation, Contact: contact}.get(model)
        chain.filter.return_value.first.return_value = row
        return chain

    db.query.side_effect = query
    return db


@pytest.fixture
def conversation(turn_context):
    return SimpleNamespace(
        id=turn_context.conversation_id,
        status="active",
        total_tokens=0,
        customer_name="Cliente Novo",
    )


@pytest.fixture
def contact(turn_context):
    return SimpleNamespace(id=turn_context.contact_id, name="Cliente Novo", permission="denied")


@pytest.fixture
def pipeline(monkeypatch):
    monkeypatch.setattr(settings, "max_tokens_per_conversation", 30000)
    monkeypatch.setattr(settings, "public_base_url", "")
    target = "storebot.services.turn_service"
    with patch(f"{target}.generate_bot_response", new_callable=AsyncMock) as generate, patch(
        f"{target}.send_text", new_callable=AsyncMock
    ) as send_text, patch(f"{target}.send_document", new_callable=AsyncMock) as send_document, patch(
        f"{target}.save_message"
    ) as save_message, patch(
        f"{target}.get_conversation_history"
    ) as history, patch(
        f"{target}.count_customer_messages"
    ) as count_messages, patch(
        f"{target}.alert_error", new_callable=AsyncMock
    ) as alert:
        generate.return_value = BotReply(text="Abrimos das 9h às 18h!", tokens_used=250)
        send_text.return_value = True
        send_document.return_value = True
        save_message.side_effect = lambda db, conversation_id, sender, content: SimpleNamespace(
            id=uuid4(), sender=sender, content=content
        )
        history.return_value = []
        count_messages.return_value = 3
        yield SimpleNamespace(
            generate=generate,
            send_text=send_text,
            send_document=send_document,
            save_message=save_message,
            history=history,
            count_messages=count_messages,
            alert=alert,
        )


def _run(turn_context, db, *fragments, **kwargs):
    turn = BufferedTurn(key=turn_context.buffer_key, fragments=list(fragments), context=turn_context)
    return asyncio.run(process_buffered_turn(turn, session_factory=lambda: db, **kwargs))


def _saved(pipeline):
    return [(c.args[2], c.args[3]) for c in pipeline.save_message.call_args_list]


class TestActiveConversation:
    def test_replies_and_stores_both_messages(self, pipeline, turn_context, conversation, contact):
        db = _db(conversation, contact)

        result = _run(turn_context, db, "What time do you open?")

        assert result.reason == "replied"
        assert result.replied is True
        assert result.status == "active"
        assert _saved(pipeline) == [("customer", "What time do you open?"), ("bot", "Abrimos das 9h às 18h!")]
        pipeline.send_text.assert_awaited_once_with(turn_context.gateway, "5511999990000", "Abrimos das 9h às 18h!")
        assert conversation.total_tokens == 250
        db.close.assert_called_once()

    def test_model_receives_contact_state_and_history(self, pipeline, turn_context, conversation, contact):
        pipeline.history.return_value = [{"role": "user", "content": "oi"}]
        db = _db(conversation, contact)

        _run(turn_context, db, "tem pizza?")

        kwargs = pipeline.generate.call_args.kwargs
        assert pipeline.generate.call_args.args[0] == turn_context.store
        assert kwargs["user_message"] == "tem pizza?"
        assert kwargs["permission"] == "denied"
        assert kwargs["history"] == [{"role": "user", "content": "oi"}]
        assert kwargs["is_first_message"] is False
        assert kwargs["db"] is db

    def test_first_customer_message_is_flagged(self, pipeline, turn_context, conversation, contact):
        pipeline.count_messages.return_value = 1

        _run(turn_context, _db(conversation, contact), "oi")

        assert pipeline.generate.call_args.kwargs["is_first_message"] is True

    def test_detected_name_updates_contact(self, pipeline, turn_context, conversation, contact):
        _run(turn_context, _db(conversation, contact), "meu nome é Ana")

        assert contact.name == "Ana"
        assert conversation.customer_name == "Ana"
        assert pipeline.generate.call_args.kwargs["contact_name"] == "Ana"

    def test_permission_update_is_persisted(self, pipeline, turn_context, conversation, contact):
        contact.permission = "allowed"
        pipeline.generate.return_value = BotReply(text="Tudo bem, sem promoções.", permission_update="denied")

        _run(turn_context, _db(conversation, contact), "não quero promoções")

        assert contact.permission == "denied"

    def test_stop_request_marker_denies_permission_and_is_stripped(self, pipeline, turn_context, conversation, contact):
        contact.permission = "allowed"
        provider = Mock()
        provider.generate = AsyncMock(
            return_value=LLMResponse(
                content="Tudo bem, não enviaremos mais promoções. [SET_PERMISSION:DENIED]",
                model="openai/gpt-4o-mini",
                usage={"total_tokens": 50},
            )
        )

        async def real_generate(*args, **kwargs):
            return await ai_service.generate_bot_response(*args, provider=provider, **kwargs)

        pipeline.generate.side_effect = real_generate
        with patch("storebot.services.ai_service.build_knowledge_context", new_callable=AsyncMock) as knowledge:
            knowledge.return_value = KnowledgeContext(text="", rag_used=False)
            result = _run(turn_context, _db(conversation, contact), "Pare de enviar mensagens")

        sent = pipeline.send_text.call_args.args[2]
        assert result.reason == "replied"
        assert contact.permission == "denied"
        assert sent == "Tudo bem, não enviaremos mais promoções."
        assert "[" not in sent
        assert _saved(pipeline)[-1] == ("bot", sent)
        assert conversation.total_tokens == 50

    def test_handover_marker_parks_conversation(self, pipeline, turn_context, conversation, contact):
        pipeline.generate.return_value = BotReply(text="Vou chamar um atendente.", handover=True, tokens_used=90)

        result = _run(turn_context, _db(conversation, contact), "quero falar com alguém")

        assert conversation.status == "waiting_human"
        assert result.handover is True
        assert ("bot", "Vou chamar um atendente.") in _saved(pipeline)

    def test_fallback_reply_hands_over(self, pipeline, turn_context, conversation, contact):
        pipeline.generate.return_value = BotReply(text="Desculpe...", handover=True, fallback=True)

        result = _run(turn_context, _db(conversation, contact), "oi")

        assert result.reason == "fallback"
        assert conversation.status == "waiting_human"

    def test_failed_send_is_not_stored(self, pipeline, turn_context, conversation, contact):
        pipeline.send_text.return_value = False

        result = _run(turn_context, _db(conversation, contact), "oi")

        assert result.replied is False
        assert _saved(pipeline) == [("customer", "oi")]


class TestStatusGate:
    def test_bot_stays_silent_while_waiting_for_human(self, pipeline, turn_context, conversation, contact):
        conversation.status = "waiting_human"

        result = _run(turn_context, _db(conversation, contact), "alô?")

        assert result.reason == "waiting_human"
        assert result.replied is False
        assert _saved(pipeline) == [("customer", "alô?")]
        pipeline.generate.assert_not_awaited()
        pipeline.send_text.assert_not_awaited()

    def test_completed_conversation_is_reopened_and_answered(self, pipeline, turn_context, conversation, contact):
        conversation.status = "completed"

        result = _run(turn_context, _db(conversation, contact), "oi, voltei!")

        assert conversation.status == "active"
        assert result.reason == "replied"
        assert result.replied is True
        pipeline.generate.assert_awaited_once()
        pipeline.send_text.assert_awaited_once()
        assert ("bot", "Abrimos das 9h às 18h!") in _saved(pipeline)

    def test_reopened_conversation_can_hand_over(self, pipeline, turn_context, conversation, contact):
        conversation.status = "completed"
        pipeline.generate.return_value = BotReply(text="Vou chamar um atendente.", handover=True)

        result = _run(turn_context, _db(conversation, contact), "quero falar com alguém")

        assert result.reason == "replied"
        assert conversation.status == "waiting_human"

    def test_missing_conversation_drops_turn(self, pipeline, turn_context, contact):
        result = _run(turn_context, _db(None, contact), "oi")

        assert result is None
        pipeline.save_message.assert_not_called()


class TestTokenBudget:
    def test_exhausted_budget_hands_over_without_model(self, pipeline, turn_context, conversation, contact):
        conversation.total_tokens = 30000

        result = _run(turn_context, _db(conversation, contact), "mais uma pergunta")

        assert result.reason == "token_limit"
        assert conversation.status == "waiting_human"
        pipeline.generate.assert_not_awaited()
        pipeline.send_text.assert_awaited_once_with(turn_context.gateway, "5511999990000", TOKEN_LIMIT_MESSAGE)

    def test_budget_checked_before_adding(self, pipeline, turn_context, conversation, contact):
        conversation.total_tokens = 29990

        result = _run(turn_context, _db(conversation, contact), "oi")

        assert result.reason == "replied"
        assert conversation.total_tokens == 30240


class TestReferenceDocument:
    def test_relative_url_is_resolved_against_request_host(self, pipeline, turn_context, conversation, contact):
        store = replace(turn_context.store, reference_document_url="/files/menu.pdf")
        ctx = replace(turn_context, store=store)
        pipeline.generate.return_value = BotReply(text="Segue o cardápio!", send_document=True)

        result = _run(ctx, _db(conversation, contact), "me manda o cardápio")

        assert result.document_sent is True
        pipeline.send_document.assert_awaited_once_with(
            ctx.gateway,
            "5511999990000",
            "https://shop.example.com/files/menu.pdf",
            caption=settings.reference_document_caption,
            file_name=settings.reference_document_filename,
        )

    def test_configured_public_url_wins(self, pipeline, turn_context, conversation, contact, monkeypatch):
        monkeypatch.setattr(settings, "public_base_url", "https://cdn.example.com/")
        ctx = replace(turn_context, store=replace(turn_context.store, reference_document_url="menu.pdf"))
        pipeline.generate.return_value = BotReply(text="Segue!", send_document=True)

        _run(ctx, _db(conversation, contact), "cardápio")

        assert pipeline.send_document.call_args.args[2] == "https://cdn.example.com/menu.pdf"

    def test_unresolvable_url_is_skipped(self, pipeline, turn_context, conversation, contact):
        ctx = replace(
            turn_context,
            public_base_url="",
            store=replace(turn_context.store, reference_document_url="menu.pdf"),
        )
        pipeline.generate.return_value = BotReply(text="Segue!", send_document=True)

        result = _run(ctx, _db(conversation, contact), "cardápio")

        assert result.document_sent is False
        assert result.replied is True
        pipeline.send_document.assert_not_awaited()

    def test_no_document_without_configured_url(self, pipeline, turn_context, conversation, contact):
        pipeline.generate.return_value = BotReply(text="Segue!", send_document=True)

        _run(turn_context, _db(conversation, contact), "cardápio")

        pipeline.send_document.assert_not_awaited()


class TestUnexpectedErrors:
    def test_error_triggers_fail_safe_handover(self, pipeline, turn_context, conversation, contact):
        pipeline.generate.side_effect = RuntimeError("unexpected")
        db = _db(conversation, contact)

        result = _run(turn_context, db, "oi")

        assert result.status == "waiting_human"
        assert result.reason == "error"
        assert conversation.status == "waiting_human"
        db.rollback.assert_called_once()
        pipeline.alert.assert_awaited_once()
        sent_text = pipeline.send_text.call_args.args[2]
        assert "atendente humano" in sent_text
        db.close.assert_called_once()

    def test_error_after_reply_does_not_send_twice(self, pipeline, turn_context, conversation, contact):
        def save(db, conversation_id, sender, content):
            if sender == "bot":
                raise RuntimeError("db went away")
            return SimpleNamespace(id=uuid4())

        pipeline.save_message.side_effect = save

        result = _run(turn_context, _db(conversation, contact), "oi")

        assert result.reason == "error"
        pipeline.send_text.assert_awaited_once()


class TestDebouncedScenario:
    def test_three_fragments_produce_one_reply(self, pipeline, turn_context, conversation, contact):
        db = _db(conversation, contact)

        async def handler(turn):
            await process_buffered_turn(turn, session_factory=lambda: db)

        async def scenario():
            debouncer = MessageDebouncer(handler, delay_ms=20)
            for fragment in ("Hi", "I want", "the menu"):
                debouncer.ingest(turn_context.buffer_key, fragment, turn_context)
            await asyncio.sleep(0.1)
            await debouncer.drain()

        asyncio.run(scenario())

        pipeline.generate.assert_awaited_once()
        assert pipeline.generate.call_args.kwargs["user_message"] == "Hi\nI want\nthe menu"
        pipeline.send_text.assert_awaited_once()
        assert _saved(pipeline)[0] == ("customer", "Hi\nI want\nthe menu")
