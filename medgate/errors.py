from typing import Any, Optional


class UpstreamError(Exception):
    """Non-2xx answer from the chat-completion provider."""

    def __init__(self, status_code: int, message: str, body: Optional[Any] = None):
        super().__init__(f"Upstream error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body


class ChatValidationError(Exception):
    """Malformed /api/chat body. Rendered as HTTP 400."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
