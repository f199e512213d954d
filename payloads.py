"""Decoding of inbound submissions into canonical submission inputs.

Two encodings are understood: ``multipart/form-data`` carries a PDF upload
and ``application/json`` carries the answers of a digital questionnaire.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from starlette.datastructures import UploadFile
from starlette.requests import Request

from errors import BadPayload, PayloadTooLarge, UnsupportedEncoding, UnsupportedMediaType

MAX_ATTACHMENT_BYTES = 15 * 1024 * 1024
# Slack for multipart boundaries and the sectionNumber part
MULTIPART_OVERHEAD_BYTES = 1024 * 1024
PDF_MEDIA_TYPE = "application/pdf"

_INT_RE = re.compile(r"^[+-]?\d+$")


@dataclass(frozen=True)
class DigitalSubmission:
    section_number: int
    answers: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AttachmentSubmission:
    section_number: int
    filename: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


SubmissionInput = Union[DigitalSubmission, AttachmentSubmission]


def coerce_section(raw: Any) -> int:
    """Section numbers arrive as ints, integral floats or digit strings."""
    if isinstance(raw, bool):
        raise BadPayload("Bad payload: sectionNumber must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and _INT_RE.match(raw.strip()):
        return int(raw.strip())
    raise BadPayload("Bad payload: sectionNumber must be an integer")


def normalize_digital(body: Any) -> DigitalSubmission:
    if not isinstance(body, dict):
        raise BadPayload("Bad payload: expected a JSON object")
    section = coerce_section(body.get("sectionNumber"))
    answers = body.get("responses", body.get("answers"))
    if answers is None:
        answers = {}
    if not isinstance(answers, dict):
        raise BadPayload("Bad payload: responses must be an object")
    return DigitalSubmission(section_number=section, answers={str(k): v for k, v in answers.items()})


def is_pdf(filename: str, media_type: str) -> bool:
    return (media_type or "").strip().lower() == PDF_MEDIA_TYPE or (filename or "").lower().endswith(".pdf")


def normalize_attachment(section_raw: Any, filename: Optional[str], media_type: Optional[str],
                         data: Optional[bytes]) -> AttachmentSubmission:
    """Validate one uploaded PDF.

    Checks run in order: file present, section number, empty file, size
    ceiling, then media type OR ``.pdf`` extension.
    """
    if data is None:
        raise BadPayload("Missing PDF file")
    section = coerce_section(section_raw)
    if len(data) == 0:
        raise BadPayload("Empty file")
    if len(data) > MAX_ATTACHMENT_BYTES:
        raise PayloadTooLarge(f"File too large. Maximum size: {MAX_ATTACHMENT_BYTES // (1024 * 1024)}MB")
    filename = filename or ""
    media_type = media_type or ""
    if not is_pdf(filename, media_type):
        raise UnsupportedMediaType()
    return AttachmentSubmission(section_number=section, filename=filename, media_type=media_type, data=data)


def content_length_exceeds_limit(content_length: Optional[str], limit: int) -> bool:
    if not content_length:
        return False
    try:
        return int(content_length) > limit
    except ValueError:
        return False


async def read_submission(request: Request) -> SubmissionInput:
    """Decode the request body according to its Content-Type."""
    ct = (request.headers.get("content-type") or "").lower()

    if "multipart/form-data" in ct:
        limit = MAX_ATTACHMENT_BYTES + MULTIPART_OVERHEAD_BYTES
        if content_length_exceeds_limit(request.headers.get("content-length"), limit):
            raise PayloadTooLarge(f"File too large. Maximum size: {MAX_ATTACHMENT_BYTES // (1024 * 1024)}MB")
        try:
            form = await request.form()
        except Exception:
            raise BadPayload("Bad payload: unreadable multipart body")
        try:
            part = form.get("pdf") or form.get("file")
            section_raw = form.get("sectionNumber")
            if not isinstance(part, UploadFile):
                return normalize_attachment(section_raw, None, None, None)
            # One byte past the ceiling is enough to reject
            data = await part.read(MAX_ATTACHMENT_BYTES + 1)
            return normalize_attachment(section_raw, part.filename, part.content_type, data)
        finally:
            await form.close()

    if "application/json" in ct:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadPayload("Invalid JSON body")
        return normalize_digital(body)

    raise UnsupportedEncoding()
