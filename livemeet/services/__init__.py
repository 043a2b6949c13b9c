"""External collaborators: credentials, access policy, AI answers."""
from livemeet.services.ai_service import AIAnswer, AIService, CloudflareAIService, create_ai_service
from livemeet.services.auth import AccessPolicy, Identity, InMemoryAccessPolicy, TokenVerifier

__all__ = [
    "AIAnswer",
    "AIService",
    "AccessPolicy",
    "CloudflareAIService",
    "Identity",
    "InMemoryAccessPolicy",
    "TokenVerifier",
    "create_ai_service",
]
