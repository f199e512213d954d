"""Error taxonomy for the submission pipeline.

Every rejection the service can report is a ``SubmissionError`` subclass.
Each class carries a machine-checkable ``kind`` (returned to clients as the
``reason`` field) and the HTTP status it maps onto.
"""

from typing import Any, Dict


class SubmissionError(Exception):
    kind = "SubmissionError"
    status_code = 400
    default_detail = "Submission rejected"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_body(self) -> Dict[str, Any]:
        return {"accepted": False, "reason": self.kind, "detail": self.detail}


class Unauthorized(SubmissionError):
    kind = "Unauthorized"
    status_code = 401
    default_detail = "Unauthorized"


class BadPayload(SubmissionError):
    kind = "BadPayload"
    status_code = 400
    default_detail = "Bad payload"


class UnsupportedEncoding(SubmissionError):
    kind = "UnsupportedEncoding"
    status_code = 415
    default_detail = 'Unsupported Content-Type (use "application/json" or "multipart/form-data")'


class PayloadTooLarge(SubmissionError):
    kind = "PayloadTooLarge"
    status_code = 413
    default_detail = "File too large"


class UnsupportedMediaType(SubmissionError):
    kind = "UnsupportedMediaType"
    status_code = 415
    default_detail = "Only PDFs are accepted"


class FormNotFound(SubmissionError):
    kind = "FormNotFound"
    status_code = 404
    default_detail = "Invalid form"


class ModalityMismatch(SubmissionError):
    kind = "ModalityMismatch"
    status_code = 400
    default_detail = "Submission type does not match the form"


class AlreadySubmitted(SubmissionError):
    kind = "AlreadySubmitted"
    status_code = 409
    default_detail = "Already submitted"


class PersistenceError(SubmissionError):
    kind = "PersistenceError"
    status_code = 500
    default_detail = "Failed to record submission"
