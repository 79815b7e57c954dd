from storebot.models.contact import Contact
from storebot.models.conversation import Conversation
from storebot.models.document_embedding import DocumentEmbedding
from storebot.models.gateway_config import GatewayConfig
from storebot.models.knowledge_document import KnowledgeDocument
from storebot.models.message import Message
from storebot.models.store_config import StoreConfig

__all__ = [
    "StoreConfig",
    "GatewayConfig",
    "KnowledgeDocument",
    "DocumentEmbedding",
    "Contact",
    "Conversation",
    "Message",
]
