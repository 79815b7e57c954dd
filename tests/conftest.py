from unittest.mock import Mock
from uuid import uuid4

import pytest

from storebot.services.turn_context import DocumentSnapshot, GatewaySnapshot, StoreSnapshot, TurnContext


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def store():
    return StoreSnapshot(
        id=uuid4(),
        tenant_id="tenant-a",
        store_name="Pizzaria Bella",
        description="Pizzas artesanais",
        opening_hours="Hours: 9-18 Mon-Fri",
        tone="friendly",
        fallback_message="",
        instagram="@bella",
        reference_document_url="",
        documents=(
            DocumentSnapshot(id=uuid4(), title="Horários", content="Hours: 9-18 Mon-Fri"),
            DocumentSnapshot(id=uuid4(), title="Antigo", content="old price list", active=False),
        ),
    )


@pytest.fixture
def gateway():
    return GatewaySnapshot(base_url="https://evo.example.com", api_key="evo-key", instance_name="bella")


@pytest.fixture
def turn_context(store, gateway):
    return TurnContext(
        tenant_id=store.tenant_id,
        phone_number="5511999990000",
        contact_id=uuid4(),
        conversation_id=uuid4(),
        store=store,
        gateway=gateway,
        public_base_url="https://shop.example.com",
        contact_name="Cliente Novo",
    )
