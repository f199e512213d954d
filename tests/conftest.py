"""
Shared fixtures.

Provides:
- A small forms catalogue (graded quiz, plain survey, PDF upload, inactive form)
- An in-memory store and a pipeline wired to a recording mail transport
"""
from typing import Any, Dict, List

import pytest

from form_schema import parse_form
from notify import NotificationDispatcher, SmtpSettings
from participants import Participant
from pipeline import SubmissionPipeline
from submissions import MemoryStore

FORMS: List[Dict[str, Any]] = [
    {
        "id": "quiz",
        "title": "Listening quiz",
        "section_number": 1,
        "kind": "digital",
        "position": 2,
        "form_schema": {
            "fields": [
                {"type": "mcq", "name": "q1", "label": "Which tone?", "options": ["A", "B", "C"],
                 "audioUrl": "https://example.org/q1.mp3"},
                {"type": "radio", "name": "q2", "label": "Pick one",
                 "options": [{"value": "a", "label": "A"}, {"value": "c", "label": "C"}]},
                {"type": "text", "name": "q3", "label": "Comments"},
            ],
            "answerKey": {"q1": "B", "q2": "c"},
        },
    },
    {
        "id": "survey",
        "title": "Background <survey>",
        "section_number": 1,
        "kind": "digital",
        "position": 1,
        "form_schema": {
            "fields": [
                {"type": "text", "name": "age", "label": "Age"},
                {"type": "scale", "name": "mood", "label": "Mood", "min": 1, "max": 7},
            ]
        },
    },
    {
        "id": "consent",
        "title": "Signed consent",
        "section_number": 2,
        "kind": "pdf",
    },
    {
        "id": "retired",
        "title": "Retired form",
        "section_number": 1,
        "kind": "digital",
        "is_active": False,
    },
]

SMTP = SmtpSettings(
    host="smtp.example.org",
    user="mailer",
    password="secret",
    from_addr="forms@example.org",
    to_addr="researcher@example.org",
    timeout=2.0,
)


class RecordingTransport:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Any] = []

    def __call__(self, settings, msg) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP unreachable")
        self.sent.append(msg)


@pytest.fixture
def forms():
    return {f["id"]: parse_form(f) for f in FORMS}


@pytest.fixture
def store(forms):
    return MemoryStore(forms)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def pipeline(store, transport):
    return SubmissionPipeline(store, NotificationDispatcher(SMTP, transport=transport))


@pytest.fixture
def alice():
    return Participant(id="p-alice", name="Alice & Co", email="alice@example.org")
