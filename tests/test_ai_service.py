import asyncio
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest

from storebot.config import settings
from storebot.services.ai_service import (
    DEFAULT_FALLBACK_MESSAGE,
    generate_bot_response,
    get_conversation_history,
    request_completion,
)
from storebot.services.knowledge_service import KnowledgeContext
from storebot.services.llm import LLMRequestError, LLMResponse, LLMResponseError


def _provider(*results):
    provider = Mock()
    provider.generate = AsyncMock(side_effect=list(results))
    return provider


def _response(content, tokens=120):
    return LLMResponse(content=content, model="openai/gpt-4o-mini", usage={"total_tokens": tokens})


@pytest.fixture(autouse=True)
def retry_settings(monkeypatch):
    monkeypatch.setattr(settings, "completion_max_retries", 3)
    monkeypatch.setattr(settings, "completion_retry_delay_ms", 2000)


@pytest.fixture
def knowledge():
    with patch("storebot.services.ai_service.build_knowledge_context", new_callable=AsyncMock) as mock_context:
        mock_context.return_value = KnowledgeContext(text="--- Horários ---\nHours: 9-18 Mon-Fri", rag_used=True)
        yield mock_context


@pytest.fixture
def alerts():
    with patch("storebot.services.ai_service.alert_error", new_callable=AsyncMock) as mock_alert:
        yield mock_alert


class TestRequestCompletion:
    def test_retries_request_errors_with_fixed_delay(self):
        provider = _provider(LLMRequestError("503", status_code=503), LLMRequestError("timeout"), _response("ok"))
        sleep = AsyncMock()

        response = asyncio.run(request_completion(provider, [], sleep_func=sleep))

        assert response.content == "ok"
        assert provider.generate.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 2.0]

    def test_reraises_after_last_attempt(self):
        provider = _provider(*[LLMRequestError("boom")] * 3)
        sleep = AsyncMock()

        with pytest.raises(LLMRequestError):
            asyncio.run(request_completion(provider, [], sleep_func=sleep))

        assert provider.generate.await_count == 3
        assert sleep.await_count == 2

    def test_response_error_is_not_retried(self):
        provider = _provider(LLMResponseError("no choices"))

        with pytest.raises(LLMResponseError):
            asyncio.run(request_completion(provider, [], sleep_func=AsyncMock()))

        assert provider.generate.await_count == 1


class TestGenerateBotResponse:
    def test_plain_reply(self, store, knowledge):
        provider = _provider(_response("Abrimos das 9h às 18h, de segunda a sexta!", tokens=321))

        reply = asyncio.run(
            generate_bot_response(store, "Ana", "denied", "What time do you open?", provider=provider)
        )

        assert reply.text == "Abrimos das 9h às 18h, de segunda a sexta!"
        assert reply.tokens_used == 321
        assert reply.fallback is False
        assert reply.handover is False
        assert reply.rag_used is True

    def test_messages_are_system_history_user(self, store, knowledge):
        provider = _provider(_response("Oi Ana!"))
        history = [{"role": "user", "content": "oi"}, {"role": "assistant", "content": "Olá!"}]

        asyncio.run(generate_bot_response(store, "Ana", None, "tudo bem?", history=history, provider=provider))

        messages = provider.generate.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert "Hours: 9-18 Mon-Fri" in messages[0]["content"]
        assert messages[1:3] == history
        assert messages[-1] == {"role": "user", "content": "tudo bem?"}

    def test_tags_are_parsed(self, store, knowledge):
        provider = _provider(_response("Combinado, não enviaremos promoções. [SET_PERMISSION:DENIED] [HUMAN_HANDOVER]"))

        reply = asyncio.run(generate_bot_response(store, "Ana", "allowed", "não quero", provider=provider))

        assert reply.text == "Combinado, não enviaremos promoções."
        assert reply.permission_update == "denied"
        assert reply.handover is True

    def test_exhausted_retries_give_fallback(self, store, knowledge, alerts):
        provider = _provider(*[LLMRequestError("503", status_code=503)] * 3)

        reply = asyncio.run(generate_bot_response(store, "Ana", None, "oi", provider=provider, sleep_func=AsyncMock()))

        assert reply.fallback is True
        assert reply.handover is True
        assert reply.text == DEFAULT_FALLBACK_MESSAGE
        assert reply.tokens_used == 0
        alerts.assert_awaited_once()

    def test_store_fallback_message_is_preferred(self, store, knowledge, alerts):
        custom = replace(store, fallback_message="Um atendente vai falar com você em instantes.")
        provider = _provider(LLMResponseError("bad json"))

        reply = asyncio.run(generate_bot_response(custom, "Ana", None, "oi", provider=provider))

        assert reply.text == "Um atendente vai falar com você em instantes."
        assert reply.handover is True

    def test_malformed_usage_counts_zero_tokens(self, store, knowledge):
        provider = _provider(LLMResponse(content="Abrimos às 9h.", model="m", usage="bad"))

        reply = asyncio.run(generate_bot_response(store, "Ana", None, "oi", provider=provider))

        assert reply.text == "Abrimos às 9h."
        assert reply.tokens_used == 0

    @pytest.mark.parametrize("content", ["", "   ", "[HUMAN_HANDOVER]"])
    def test_empty_reply_gives_fallback(self, store, knowledge, content):
        provider = _provider(_response(content))

        reply = asyncio.run(generate_bot_response(store, "Ana", None, "oi", provider=provider))

        assert reply.fallback is True
        assert reply.handover is True

    def test_document_claim_without_marker_forces_send(self, store, knowledge):
        with_url = replace(store, reference_document_url="https://shop.example.com/menu.pdf")
        provider = _provider(_response("Estou te enviando o cardápio em PDF agora!"))

        reply = asyncio.run(generate_bot_response(with_url, "Ana", None, "me manda o cardápio", provider=provider))

        assert reply.send_document is True

    def test_document_claim_ignored_without_url(self, store, knowledge):
        provider = _provider(_response("Estou te enviando o cardápio em PDF agora!"))

        reply = asyncio.run(generate_bot_response(store, "Ana", None, "me manda o cardápio", provider=provider))

        assert reply.send_document is False

    def test_db_is_passed_to_retrieval(self, store, knowledge, db_session):
        provider = _provider(_response("ok"))

        asyncio.run(generate_bot_response(store, "Ana", None, "horário?", db=db_session, provider=provider))

        knowledge.assert_awaited_once_with(db_session, "horário?", store)


class TestGetConversationHistory:
    def _message(self, sender, content):
        return SimpleNamespace(sender=sender, content=content, is_from_customer=sender == "customer")

    def test_history_is_oldest_first_without_system(self, db_session):
        newest_first = [
            self._message("bot", "Abrimos às 9h."),
            self._message("system", "conversation taken over"),
            self._message("customer", "que horas abre?"),
        ]
        db_session.query.return_value.filter.return_value.order_by.return_value.limit.return_value.all.return_value = (
            newest_first
        )

        history = get_conversation_history(db_session, uuid4(), limit=10)

        assert history == [
            {"role": "user", "content": "que horas abre?"},
            {"role": "assistant", "content": "Abrimos às 9h."},
        ]

    def test_excluded_message_adds_filter(self, db_session):
        chain = db_session.query.return_value.filter.return_value.filter.return_value
        chain.order_by.return_value.limit.return_value.all.return_value = []

        assert get_conversation_history(db_session, uuid4(), limit=5, exclude_message_id=uuid4()) == []
        chain.order_by.return_value.limit.assert_called_once_with(5)

    def test_zero_limit_skips_query(self, db_session):
        assert get_conversation_history(db_session, uuid4(), limit=0) == []
        db_session.query.assert_not_called()
