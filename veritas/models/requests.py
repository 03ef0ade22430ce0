# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Both chat endpoints take the whole conversation: the last user message is
# the question, and every user and assistant turn counts toward the reserved
# tokens.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=20000)


class ChatRequest(BaseModel):
    """
    Request body for POST /ask and POST /chat/stream.

    Example:
        {
            "messages": [{"role": "user", "content": "What does clause 4 say?"}],
            "document_id": 1
        }
    """

    messages: list[ChatMessage] = Field(
        ...,
        min_length=1,
        description="Conversation so far, oldest first. Must contain a user message.",
    )

    # If None, searches the owner's documents
    document_id: int | None = Field(
        default=None,
        description="Restrict retrieval to one document.",
        examples=[1],
    )

    owner_id: int | None = Field(
        default=None,
        description="Restrict retrieval to this owner's documents when no document_id is given.",
    )

    @field_validator("messages")
    @classmethod
    def _has_user_message(cls, messages: list[ChatMessage]) -> list[ChatMessage]:
        if not any(m.role == "user" and m.content.strip() for m in messages):
            raise ValueError("messages must contain a non-empty user message")
        return messages

    def as_dicts(self) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.messages]

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "messages": [
                        {"role": "user", "content": "What is the notice period?"},
                    ],
                    "document_id": 1,
                },
            ],
        },
    )


# Same body, kept as a separate name for the OpenAPI docs
class AskRequest(ChatRequest):
    """Request body for POST /ask."""
