from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .classifier import TopicClassifier
from .metrics import GATE_DECISIONS_TOTAL
from .prompt import REFUSAL_MESSAGE
from .schemas import ChatMessage

logger = logging.getLogger("medgate.gate")


class GatePolicy(str, Enum):
    SINGLE = "single"
    CONTEXT = "context"
    SESSION = "session"

    @classmethod
    def parse(cls, value: str) -> "GatePolicy":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown gate policy {value!r}; expected one of "
                + ", ".join(p.value for p in cls)
            ) from None


@dataclass
class GateDecision:
    allowed: bool
    policy: GatePolicy
    classifier_calls: int


def _latest_user_index(conversation: Sequence[ChatMessage]) -> Optional[int]:
    for i in range(len(conversation) - 1, -1, -1):
        if conversation[i].role == "user":
            return i
    return None


def split_latest_turn(conversation: Sequence[ChatMessage]) -> Tuple[str, Optional[str], List[ChatMessage]]:
    """
    Returns (latest user content, prior assistant reply, history up to the latest user turn).

    Turns after the latest user message are dropped so the classifier never
    sees them. A conversation without a user turn gets an empty one appended.
    """
    idx = _latest_user_index(conversation)
    if idx is None:
        return "", None, [*conversation, ChatMessage(role="user", content="")]

    previous_reply = None
    for m in reversed(conversation[:idx]):
        if m.role == "assistant":
            previous_reply = m.content
            break
    return conversation[idx].content, previous_reply, list(conversation[: idx + 1])


def refusal_envelope() -> Dict[str, Any]:
    """Same shape as a real completion; only the content tells them apart."""
    return {
        "choices": [
            {"message": {"role": "assistant", "content": REFUSAL_MESSAGE}}
        ]
    }


class ConversationGate:
    def __init__(self, classifier: TopicClassifier, policy: GatePolicy = GatePolicy.CONTEXT):
        self.classifier = classifier
        self.policy = policy

    def evaluate(self, conversation: Sequence[ChatMessage]) -> GateDecision:
        user_message, previous_reply, history = split_latest_turn(conversation)

        if self.policy is GatePolicy.SESSION:
            allowed = self.classifier.classify_conversation(history)
            calls = 1
        elif self.policy is GatePolicy.SINGLE:
            allowed = self.classifier.classify_message(user_message)
            calls = 1
        else:
            allowed = self.classifier.classify_message(user_message)
            calls = 1
            if not allowed and previous_reply is not None:
                allowed = self.classifier.classify_followup(previous_reply, user_message)
                calls = 2

        decision = "allow" if allowed else "deny"
        GATE_DECISIONS_TOTAL.labels(policy=self.policy.value, decision=decision).inc()
        logger.info("gate %s (policy=%s, calls=%d)", decision, self.policy.value, calls)
        return GateDecision(allowed=allowed, policy=self.policy, classifier_calls=calls)
