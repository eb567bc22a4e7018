from diarist.services.llm.base import (
    BaseGatewayProvider,
    GatewayError,
    GatewayTransportError,
    GatewayValidationError,
    MeetingGateway,
)
from diarist.services.llm.gemini_provider import GeminiProvider

__all__ = [
    "BaseGatewayProvider",
    "GatewayError",
    "GatewayTransportError",
    "GatewayValidationError",
    "MeetingGateway",
    "GeminiProvider",
]
