"""Researcher notification emails.

Every accepted submission triggers an email to a fixed researcher address
with the participant, the form and either the raw answers or the uploaded
PDF.  Delivery is best-effort: failures are logged and never reach the
caller.
"""

import asyncio
import html
import json
import logging
import os
import smtplib
import ssl
from concurrent.futures import Executor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, List, Optional

from form_schema import Form
from grading import GradingResult, render_html_report, render_text_report
from participants import Participant
from payloads import AttachmentSubmission, DigitalSubmission, SubmissionInput

logger = logging.getLogger("studyforms.notify")

DEFAULT_TIMEOUT = 5.0


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SmtpSettings:
    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    from_addr: str = ""
    from_name: str = "Study Forms"
    to_addr: str = ""
    use_ssl: bool = False
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> "SmtpSettings":
        user = os.getenv("SMTP_USER", "")
        return cls(
            host=os.getenv("SMTP_HOST", ""),
            port=int(os.getenv("SMTP_PORT", "587")),
            user=user,
            password=os.getenv("SMTP_PASS", ""),
            from_addr=os.getenv("SMTP_FROM", user),
            from_name=os.getenv("SMTP_FROM_NAME", "Study Forms"),
            to_addr=os.getenv("NOTIFY_TO", ""),
            use_ssl=_truthy(os.getenv("SMTP_USE_SSL", "")),
            timeout=float(os.getenv("NOTIFY_TIMEOUT", str(DEFAULT_TIMEOUT))),
        )

    def missing(self) -> List[str]:
        names = []
        if not self.host:
            names.append("SMTP_HOST")
        if not self.from_addr:
            names.append("SMTP_FROM")
        if not self.to_addr:
            names.append("NOTIFY_TO")
        if not self.password:
            names.append("SMTP_PASS")
        return names


def _e(value: object) -> str:
    return html.escape(str(value), quote=True)


def build_message(settings: SmtpSettings, participant: Participant, form: Form,
                  submission: SubmissionInput, grading: Optional[GradingResult] = None) -> EmailMessage:
    """Format the researcher email for one submission."""
    section = submission.section_number
    name = participant.name or "(not provided)"
    email = participant.email or "(unknown)"
    is_pdf = isinstance(submission, AttachmentSubmission)

    msg = EmailMessage()
    msg["From"] = f"{settings.from_name} <{settings.from_addr}>"
    msg["To"] = settings.to_addr
    if participant.email:
        msg["Reply-To"] = participant.email
    if is_pdf:
        msg["Subject"] = f"PDF submission: {form.title} (Section {section})"
    else:
        msg["Subject"] = f"New submission: {form.title} (Section {section})"
    msg["X-Mailer"] = "Study Forms"

    text_parts = [
        f"Name: {name}",
        f"Email: {email}",
        f"Participant: {participant.id}",
        "",
        f"Form: {form.title}",
        f"Section: {section}",
        f"Form ID: {form.id}",
        "",
    ]
    html_parts = [
        '<div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial,sans-serif">',
        f"<p><strong>Name:</strong> {_e(name)}<br/><strong>Email:</strong> {_e(email)}<br/>"
        f"<strong>Participant:</strong> {_e(participant.id)}</p>",
        f'<p style="margin:0 0 10px"><strong>Form:</strong> {_e(form.title)}<br/>'
        f"<strong>Section:</strong> {section}<br/><strong>Form ID:</strong> {_e(form.id)}</p>",
    ]

    if grading is not None:
        text_parts.extend([render_text_report(grading), ""])
        html_parts.append(render_html_report(grading))

    if isinstance(submission, DigitalSubmission):
        pretty = json.dumps(submission.answers, indent=2, ensure_ascii=False)
        text_parts.extend(["Raw responses:", pretty])
        html_parts.append('<p style="margin:10px 0 6px">Raw responses:</p>')
        html_parts.append(
            '<pre style="font-family:ui-monospace,Menlo,Consolas,monospace;font-size:12px;'
            f'white-space:pre-wrap;word-break:break-word;">{_e(pretty)}</pre>'
        )
    else:
        who = participant.email or participant.id
        text_parts.append(f"{who} submitted a PDF for the form above.")
        html_parts.append(f"<p>{_e(who)} submitted a PDF for the form above.</p>")
    html_parts.append("</div>")

    msg.set_content("\n".join(text_parts))
    msg.add_alternative("".join(html_parts), subtype="html")

    if isinstance(submission, AttachmentSubmission):
        filename = submission.filename or f"submission-{section}-{form.id}.pdf"
        msg.add_attachment(submission.data, maintype="application", subtype="pdf", filename=filename)
    return msg


def smtp_transport(settings: SmtpSettings, msg: EmailMessage) -> None:
    if settings.use_ssl:
        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(settings.host, settings.port, context=context, timeout=settings.timeout) as s:
            if settings.user and settings.password:
                s.login(settings.user, settings.password)
            s.send_message(msg)
    else:
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout) as s:
            s.ehlo()
            if s.has_extn("starttls"):
                s.starttls(context=ssl.create_default_context())
                s.ehlo()
            if settings.user and settings.password:
                s.login(settings.user, settings.password)
            s.send_message(msg)


Transport = Callable[[SmtpSettings, EmailMessage], None]


class NotificationDispatcher:
    """Sends researcher emails without ever failing the caller."""

    def __init__(self, settings: SmtpSettings, transport: Optional[Transport] = None,
                 executor: Optional[Executor] = None) -> None:
        self.settings = settings
        self.transport = transport or smtp_transport
        self.executor = executor

    def send(self, participant: Participant, form: Form, submission: SubmissionInput,
             grading: Optional[GradingResult] = None) -> bool:
        missing = self.settings.missing()
        if missing:
            logger.error("Notification not sent: missing %s", "/".join(missing))
            return False
        try:
            msg = build_message(self.settings, participant, form, submission, grading)
            self.transport(self.settings, msg)
        except Exception as exc:
            logger.exception("Failed to send notification for participant=%s form=%s: %s",
                             participant.id, form.id, exc)
            return False
        logger.info("Sent notification for participant=%s form=%s to %s",
                    participant.id, form.id, self.settings.to_addr)
        return True

    async def dispatch(self, participant: Participant, form: Form, submission: SubmissionInput,
                       grading: Optional[GradingResult] = None) -> str:
        """Launch the send detached and wait at most ``settings.timeout`` for its outcome.

        Returns ``"sent"``, ``"failed"`` or ``"pending"`` (still running when
        the wait ended).
        """
        loop = asyncio.get_running_loop()
        task = loop.run_in_executor(self.executor, self.send, participant, form, submission, grading)
        try:
            ok = await asyncio.wait_for(asyncio.shield(task), timeout=self.settings.timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification for participant=%s form=%s still pending after %.1fs",
                           participant.id, form.id, self.settings.timeout)
            return "pending"
        except Exception:
            logger.exception("Notification task crashed for participant=%s form=%s", participant.id, form.id)
            return "failed"
        return "sent" if ok else "failed"
