import pytest
from fastapi.testclient import TestClient

from medgate.errors import UpstreamError
from medgate.main import create_app
from medgate.schemas import ChatMessage
from medgate.session import SessionStore

MEDICAL_KEYWORDS = (
    "fever",
    "insulin",
    "icd-10",
    "headache",
    "painkiller",
    "blood pressure",
    "diabetes",
)

COMPLETION = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Rest and drink fluids."},
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 12, "completion_tokens": 5},
}


def _plain(messages):
    return [m.model_dump() if isinstance(m, ChatMessage) else dict(m) for m in messages]


class FakeUpstream:
    """
    Stands in for the provider. Classifier calls (max_tokens == 1) answer
    "yes" when a non-system message mentions a medical keyword.
    """

    def __init__(self, completion=None, completion_error=None, classifier_error=None):
        self.completion = completion or COMPLETION
        self.completion_error = completion_error
        self.classifier_error = classifier_error
        self.calls = []

    @property
    def classifier_calls(self):
        return [c for c in self.calls if c["max_tokens"] == 1]

    @property
    def completion_calls(self):
        return [c for c in self.calls if c["max_tokens"] != 1]

    def chat_completion(self, model, messages, max_tokens, temperature):
        msgs = _plain(messages)
        self.calls.append(
            {"model": model, "messages": msgs, "max_tokens": max_tokens, "temperature": temperature}
        )

        if max_tokens == 1:
            if self.classifier_error is not None:
                raise self.classifier_error
            text = " ".join(m["content"] for m in msgs if m["role"] != "system").lower()
            verdict = "yes" if any(k in text for k in MEDICAL_KEYWORDS) else "no"
            return {"choices": [{"message": {"role": "assistant", "content": verdict}}]}

        if self.completion_error is not None:
            raise self.completion_error
        return self.completion


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def client(upstream, session_store):
    app = create_app(upstream=upstream, session_store=session_store)
    return TestClient(app)


@pytest.fixture
def upstream_error():
    return UpstreamError(429, "Rate limit reached", {"error": {"message": "Rate limit reached"}})
