"""Conversation engine package."""

from burrow.chat.generator import ContentGenerator, RepublicContentGenerator
from burrow.chat.retry import RetryOptions
from burrow.chat.session import ChatConfig, ChatSession, FallbackHandler
from burrow.chat.types import (
    AuthType,
    EmptyPart,
    FunctionCallPart,
    FunctionDeclaration,
    FunctionResponsePart,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    TextPart,
    ThoughtPart,
    Turn,
)

__all__ = [
    "AuthType",
    "ChatConfig",
    "ChatSession",
    "ContentGenerator",
    "EmptyPart",
    "FallbackHandler",
    "FunctionCallPart",
    "FunctionDeclaration",
    "FunctionResponsePart",
    "GenerateContentRequest",
    "GenerateContentResponse",
    "GenerationConfig",
    "Part",
    "RepublicContentGenerator",
    "RetryOptions",
    "TextPart",
    "ThoughtPart",
    "Turn",
]
