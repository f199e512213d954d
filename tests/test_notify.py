import pytest

from grading import grade_answers
from notify import NotificationDispatcher, SmtpSettings, build_message
from participants import Participant
from payloads import AttachmentSubmission, DigitalSubmission
from tests.conftest import SMTP, RecordingTransport


def _html(msg):
    return msg.get_body(("html",)).get_content()


def test_digital_message_escapes_user_text(forms):
    mallory = Participant(id="p-m", name="<b>Mallory</b>", email="m@example.org")
    sub = DigitalSubmission(1, {"age": "<script>alert('x')</script> & \"more\""})

    msg = build_message(SMTP, mallory, forms["survey"], sub)

    body = _html(msg)
    assert msg["Subject"] == "New submission: Background <survey> (Section 1)"
    assert msg["To"] == "researcher@example.org"
    assert "<script>" not in body
    assert "&lt;script&gt;" in body
    assert "&lt;b&gt;Mallory&lt;/b&gt;" in body
    assert "Background &lt;survey&gt;" in body
    assert "&amp;" in body
    assert "&#x27;" in body
    assert "&quot;" in body


def test_graded_message_includes_score(forms, alice):
    sub = DigitalSubmission(1, {"q1": "b"})
    grading = grade_answers(forms["quiz"].answer_key, sub.answers)

    body = _html(build_message(SMTP, alice, forms["quiz"], sub, grading))

    assert "Score: 1/2 (50%)" in body
    assert "(blank)" in body


def test_pdf_message_attaches_upload_with_default_name(forms):
    sub = AttachmentSubmission(2, "", "application/pdf", b"%PDF-1.7\n")

    msg = build_message(SMTP, Participant(id="p-1"), forms["consent"], sub)

    assert msg["Subject"] == "PDF submission: Signed consent (Section 2)"
    attachment = next(msg.iter_attachments())
    assert attachment.get_filename() == "submission-2-consent.pdf"
    assert attachment.get_content() == b"%PDF-1.7\n"
    assert "(not provided)" in _html(msg)


def test_missing_configuration_is_reported_not_raised(forms, alice):
    transport = RecordingTransport()
    dispatcher = NotificationDispatcher(SmtpSettings(host="h", from_addr="f@x"), transport=transport)

    assert dispatcher.send(alice, forms["survey"], DigitalSubmission(1, {})) is False
    assert transport.sent == []
    assert SmtpSettings().missing() == ["SMTP_HOST", "SMTP_FROM", "NOTIFY_TO", "SMTP_PASS"]


def test_transport_errors_are_swallowed(forms, alice):
    dispatcher = NotificationDispatcher(SMTP, transport=RecordingTransport(fail=True))

    assert dispatcher.send(alice, forms["survey"], DigitalSubmission(1, {})) is False


@pytest.mark.asyncio
async def test_dispatch_reports_outcome(forms, alice):
    ok = NotificationDispatcher(SMTP, transport=RecordingTransport())
    bad = NotificationDispatcher(SMTP, transport=RecordingTransport(fail=True))

    assert await ok.dispatch(alice, forms["survey"], DigitalSubmission(1, {})) == "sent"
    assert await bad.dispatch(alice, forms["survey"], DigitalSubmission(1, {})) == "failed"


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "mail.example.org")
    monkeypatch.setenv("SMTP_USER", "bot@example.org")
    monkeypatch.setenv("SMTP_PASS", "pw")
    monkeypatch.delenv("SMTP_FROM", raising=False)
    monkeypatch.setenv("NOTIFY_TO", "lab@example.org")
    monkeypatch.setenv("SMTP_USE_SSL", "yes")
    monkeypatch.setenv("NOTIFY_TIMEOUT", "3")

    settings = SmtpSettings.from_env()

    assert settings.from_addr == "bot@example.org"
    assert settings.use_ssl
    assert settings.timeout == 3.0
    assert settings.missing() == []
