from storebot.schemas.admin import ConversationActionResponse, EmbeddingsStatusResponse
from storebot.schemas.webhook import EvolutionWebhookPayload, WebhookResponse

__all__ = ["EvolutionWebhookPayload", "WebhookResponse", "ConversationActionResponse", "EmbeddingsStatusResponse"]
