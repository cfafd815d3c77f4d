import logging
from typing import Any, Sequence

import requests

from .errors import UpstreamError
from .llm_client import UpstreamClient
from .metrics import CLASSIFIER_CALLS_TOTAL
from .prompt import build_classification_messages, build_followup_message
from .schemas import ChatMessage

logger = logging.getLogger("medgate.classifier")

CLASSIFIER_MAX_TOKENS = 1
CLASSIFIER_TEMPERATURE = 0.0


def parse_verdict(data: Any) -> bool:
    """
    Reduce a completion body to the in-domain verdict.

    Only an exact "yes" (after trim + lower-case) counts; every other
    shape, including a malformed body, is False.
    """
    verdict = False
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str) and content.strip().lower() == "yes":
                verdict = True
    return verdict


class TopicClassifier:
    """Binary medical / not-medical classifier backed by the upstream model."""

    def __init__(self, client: UpstreamClient, model: str = "gpt-3.5-turbo"):
        self.client = client
        self.model = model

    def classify_conversation(self, conversation: Sequence[ChatMessage]) -> bool:
        messages = build_classification_messages(conversation)
        try:
            data = self.client.chat_completion(
                model=self.model,
                messages=messages,
                max_tokens=CLASSIFIER_MAX_TOKENS,
                temperature=CLASSIFIER_TEMPERATURE,
            )
        except (UpstreamError, requests.RequestException, ValueError) as exc:
            # fail closed
            CLASSIFIER_CALLS_TOTAL.labels(verdict="failed").inc()
            logger.warning("classification failed, denying: %s", exc)
            return False

        verdict = parse_verdict(data)
        CLASSIFIER_CALLS_TOTAL.labels(verdict="yes" if verdict else "no").inc()
        return verdict

    def classify_message(self, content: str) -> bool:
        return self.classify_conversation([ChatMessage(role="user", content=content)])

    def classify_followup(self, previous_reply: str, user_message: str) -> bool:
        return self.classify_conversation([build_followup_message(previous_reply, user_message)])
