import pytest

from medgate.classifier import TopicClassifier
from medgate.gate import ConversationGate, GatePolicy, refusal_envelope, split_latest_turn
from medgate.prompt import REFUSAL_MESSAGE
from medgate.schemas import ChatMessage

from conftest import FakeUpstream


def _msgs(*pairs):
    return [ChatMessage(role=r, content=c) for r, c in pairs]


def _gate(policy, upstream=None):
    up = upstream or FakeUpstream()
    return ConversationGate(TopicClassifier(up), policy), up


FOLLOWUP = _msgs(
    ("user", "I have a fever"),
    ("assistant", "Your fever should subside in 2-3 days with rest."),
    ("user", "how long does it last?"),
)


def test_split_latest_turn_finds_user_and_prior_reply():
    user, reply, history = split_latest_turn(FOLLOWUP)
    assert user == "how long does it last?"
    assert reply == "Your fever should subside in 2-3 days with rest."
    assert history == FOLLOWUP


def test_split_latest_turn_drops_turns_after_latest_user():
    convo = [*FOLLOWUP, ChatMessage(role="assistant", content="stale")]
    _, _, history = split_latest_turn(convo)
    assert history[-1].content == "how long does it last?"


def test_split_latest_turn_without_user_message():
    user, reply, history = split_latest_turn(_msgs(("system", "s")))
    assert user == ""
    assert reply is None
    assert history[-1] == ChatMessage(role="user", content="")


@pytest.mark.parametrize("text", ["fever", "insulin dosage", "ICD-10 code for diabetes"])
@pytest.mark.parametrize("policy", list(GatePolicy))
def test_medical_message_is_allowed(policy, text):
    gate, _ = _gate(policy)
    assert gate.evaluate(_msgs(("user", text))).allowed is True


@pytest.mark.parametrize("policy", list(GatePolicy))
def test_off_topic_message_is_denied(policy):
    gate, _ = _gate(policy)
    decision = gate.evaluate(_msgs(("user", "what's the weather today?")))
    assert decision.allowed is False
    assert decision.policy is policy


def test_context_policy_recovers_followup():
    gate, up = _gate(GatePolicy.CONTEXT)

    decision = gate.evaluate(FOLLOWUP)

    assert decision.allowed is True
    assert decision.classifier_calls == 2
    assert up.calls[0]["messages"][-1]["content"] == "how long does it last?"
    assert up.calls[1]["messages"][-1]["content"].startswith("Previous reply: Your fever")


def test_context_policy_single_call_when_first_pass_allows():
    gate, up = _gate(GatePolicy.CONTEXT)
    decision = gate.evaluate(_msgs(("user", "what about my blood pressure?")))
    assert decision.allowed is True
    assert decision.classifier_calls == 1
    assert len(up.calls) == 1


def test_context_policy_skips_second_pass_without_prior_reply():
    gate, up = _gate(GatePolicy.CONTEXT)
    decision = gate.evaluate(_msgs(("user", "how long does it last?")))
    assert decision.allowed is False
    assert len(up.calls) == 1


def test_single_policy_ignores_context():
    gate, up = _gate(GatePolicy.SINGLE)
    assert gate.evaluate(FOLLOWUP).allowed is False
    assert len(up.calls) == 1


def test_session_policy_classifies_full_history_once():
    gate, up = _gate(GatePolicy.SESSION)

    assert gate.evaluate(FOLLOWUP).allowed is True

    assert len(up.calls) == 1
    sent = [m["content"] for m in up.calls[0]["messages"][1:]]
    assert sent == [m.content for m in FOLLOWUP]


def test_classifier_failure_denies(upstream_error):
    gate, _ = _gate(GatePolicy.CONTEXT, FakeUpstream(classifier_error=upstream_error))
    assert gate.evaluate(FOLLOWUP).allowed is False


def test_refusal_envelope_shape():
    assert refusal_envelope() == {
        "choices": [{"message": {"role": "assistant", "content": REFUSAL_MESSAGE}}]
    }


def test_policy_parse():
    assert GatePolicy.parse(" Context ") is GatePolicy.CONTEXT
    with pytest.raises(ValueError):
        GatePolicy.parse("vibes")
