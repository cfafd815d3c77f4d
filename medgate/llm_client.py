import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from .config import get_settings
from .errors import UpstreamError
from .metrics import (
    UPSTREAM_REQUESTS_TOTAL,
    UPSTREAM_LATENCY_SECONDS,
    UPSTREAM_PROMPT_TOKENS_TOTAL,
    UPSTREAM_COMPLETION_TOKENS_TOTAL,
)
from .schemas import ChatMessage

logger = logging.getLogger("medgate.upstream")

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
TRANSIENT_STATUSES = (503, 504)

MessageLike = Union[ChatMessage, Dict[str, Any]]


def _as_payload_messages(messages: Sequence[MessageLike]) -> List[Dict[str, Any]]:
    out = []
    for m in messages:
        if isinstance(m, ChatMessage):
            out.append(m.model_dump())
        else:
            out.append(dict(m))
    return out


def extract_error_message(body: Any) -> str:
    """Pull `error.message` out of a provider error body, if there is one."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    return "Unknown error"


class UpstreamClient:
    """
    OpenAI-compatible *CHAT COMPLETIONS* client.

    One POST per call, bearer-authenticated. The parsed JSON body is
    returned untouched so the proxy can relay it as-is.

    Timeout and retries are opt-in: with the defaults a call inherits the
    transport's behaviour (no timeout) and is attempted exactly once.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout_s: Optional[float] = None,
        retries: int = 0,
        retry_backoff_s: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.retries = retries
        self.retry_backoff_s = retry_backoff_s
        self.http = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}{CHAT_COMPLETIONS_PATH}"

    def chat_completion(
        self,
        model: str,
        messages: Sequence[MessageLike],
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        payload = {
            "model": model,
            "messages": _as_payload_messages(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        for attempt in range(self.retries + 1):
            last_attempt = attempt >= self.retries
            start = time.time()
            try:
                r = self.http.post(
                    self.url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout_s,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                UPSTREAM_REQUESTS_TOTAL.labels(model=model, status="error").inc()
                if last_attempt:
                    raise
                logger.warning("upstream transport error (attempt %d): %s", attempt + 1, exc)
                time.sleep(self.retry_backoff_s)
                continue
            finally:
                UPSTREAM_LATENCY_SECONDS.labels(model=model).observe(time.time() - start)

            if r.status_code in TRANSIENT_STATUSES and not last_attempt:
                UPSTREAM_REQUESTS_TOTAL.labels(model=model, status="error").inc()
                logger.warning(
                    "upstream transient status %d (attempt %d)", r.status_code, attempt + 1
                )
                time.sleep(self.retry_backoff_s)
                continue

            try:
                data = r.json()
            except ValueError:
                data = None

            if not 200 <= r.status_code < 300:
                UPSTREAM_REQUESTS_TOTAL.labels(model=model, status="error").inc()
                message = extract_error_message(data)
                logger.error("upstream API error %d: %s", r.status_code, message)
                raise UpstreamError(r.status_code, message, data)

            if not isinstance(data, dict):
                UPSTREAM_REQUESTS_TOTAL.labels(model=model, status="error").inc()
                raise UpstreamError(502, "Upstream returned a non-JSON body")

            UPSTREAM_REQUESTS_TOTAL.labels(model=model, status="success").inc()

            usage = data.get("usage") or {}
            prompt_tokens = int(usage.get("prompt_tokens", 0) or 0)
            completion_tokens = int(usage.get("completion_tokens", 0) or 0)
            if prompt_tokens:
                UPSTREAM_PROMPT_TOKENS_TOTAL.labels(model=model).inc(prompt_tokens)
            if completion_tokens:
                UPSTREAM_COMPLETION_TOKENS_TOTAL.labels(model=model).inc(completion_tokens)

            return data

        # range(retries + 1) always returns or raises on its last attempt
        raise AssertionError("unreachable")


def build_upstream_client_from_env() -> UpstreamClient:
    """
    Factory for the provider client.

    Pointing the proxy at another OpenAI-compatible server is done purely
    via environment variables.
    """
    settings = get_settings()

    api_key = settings.openai_api_key or None
    if not api_key:
        logger.warning("OPENAI_API_KEY is not set; upstream calls will be unauthenticated")

    return UpstreamClient(
        base_url=settings.openai_base_url,
        api_key=api_key,
        timeout_s=settings.upstream_timeout_s,
        retries=settings.upstream_retries,
        retry_backoff_s=settings.upstream_retry_backoff_s,
    )
