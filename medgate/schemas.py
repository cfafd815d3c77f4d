from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequestParams(BaseModel):
    """Completion knobs; None means "use the configured default"."""

    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class StatelessChatRequest(ChatRequestParams):
    messages: List[ChatMessage]


class SessionChatRequest(ChatRequestParams):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: Optional[ChatMessage] = None


class HealthResponse(BaseModel):
    status: str
    message: str
    environment: str


class PdfAnalysisResponse(BaseModel):
    success: bool
    text: str
    pages: int
    info: Dict[str, Any]
