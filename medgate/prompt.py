from __future__ import annotations

from typing import List, Sequence

from .schemas import ChatMessage

CLASSIFIER_RULES = """You are a strict binary classifier.

Determine if the user's message is related to **medical topics**, including:

Symptoms (e.g., fever, stomach pain, dizziness, fatigue, "not feeling well", "feeling sick")

Diseases and conditions (e.g., diabetes, typhoid, asthma, cancer, infections, chronic illness)

Medications or drugs (e.g., paracetamol, antibiotics, insulin, dosage, side effects, drug interactions)

Medical coding (e.g., ICD, CPT, HCPCS, billing codes, modifiers, diagnosis codes)

Diagnosis or treatment (e.g., test results, prescriptions, therapies, interpretation of lab reports)

Healthcare services (e.g., consultation, OPD, emergency, telemedicine, appointments, hospital logistics)

Insurance and billing (e.g., medical claims, reimbursements, coverage questions, preauthorization)

Clinical procedures (e.g., MRI, surgery, X-ray, CT scan, biopsy, endoscopy)

Body parts or human anatomy (e.g., heart, lungs, spine, liver, joints, nerves)

Mental health (e.g., anxiety, depression, counseling, psychiatric care)

Medical devices or equipment (e.g., pacemaker, glucometer, thermometer, wheelchair)

Health vitals or measurements (e.g., blood pressure, oxygen saturation, glucose levels, heart rate)

The user message may also be a **follow-up to a previous assistant message**, like "how long does it last?", "can it be treated?", etc.
If it is a valid **medical message** or **follow-up to a medical reply**, respond with **yes**. Otherwise, respond with **no**.

Respond strictly with only one word: **"yes"** or **"no"**, no punctuation or explanation.
"""

SESSION_SYSTEM_PROMPT = (
    "You are WellMed AI, a medical coding and healthcare assistant. "
    "Answer questions about symptoms, conditions, medications, medical coding, "
    "procedures and healthcare billing. Do not give a definitive diagnosis; "
    "advise consulting a clinician when appropriate."
)

REFUSAL_MESSAGE = (
    "Sorry, WellMed AI is strictly a medical coding and healthcare assistant. "
    "We can't respond to unrelated topics."
)


def build_followup_message(previous_reply: str, user_message: str) -> ChatMessage:
    """Fold the last assistant reply into one user turn so short follow-ups classify."""
    return ChatMessage(
        role="user",
        content=f"Previous reply: {previous_reply}\nUser message: {user_message}",
    )


def build_classification_messages(view: Sequence[ChatMessage]) -> List[ChatMessage]:
    return [ChatMessage(role="system", content=CLASSIFIER_RULES), *view]
