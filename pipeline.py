"""Submission processing.

``SubmissionPipeline.submit`` runs one submission through these steps, in
order:

1. resolve the form (exists, active, same section, same modality)
2. refuse when the participant already has a finalized record for it
3. grade digital answers when the form carries an answer key
4. notify the researcher (best-effort, bounded wait)
5. record the finalized state (insert, or finalize the existing draft)

Only step 5 can fail the request after validation has passed.  Store calls
are synchronous and run on an executor so the event loop is never blocked.
"""

import asyncio
import logging
from concurrent.futures import Executor
from typing import Any, Dict, List, Optional, Tuple

from errors import AlreadySubmitted, FormNotFound, ModalityMismatch, PersistenceError
from form_schema import Form, Modality
from grading import GradingResult, grade_answers
from notify import NotificationDispatcher
from participants import Participant
from payloads import AttachmentSubmission, DigitalSubmission, SubmissionInput
from submissions import (
    DuplicateRecordError,
    StaleRecordError,
    StoreError,
    SubmissionRecord,
    SubmissionStore,
    utcnow_iso,
)

logger = logging.getLogger("studyforms.pipeline")


def resolve_form(form: Optional[Form], section_number: int, submission: SubmissionInput) -> Form:
    """Check that ``form`` can accept ``submission``; returns the form."""
    if form is None or not form.is_active or form.section_number != section_number:
        raise FormNotFound()
    if isinstance(submission, AttachmentSubmission) and form.modality is not Modality.ATTACHMENT:
        raise ModalityMismatch("This form is not a PDF upload")
    if isinstance(submission, DigitalSubmission) and form.modality is not Modality.DIGITAL:
        raise ModalityMismatch("This form expects a PDF upload")
    return form


def guard_duplicate(existing: Optional[SubmissionRecord]) -> Optional[SubmissionRecord]:
    """Reject finalized records; a draft is returned for in-place update."""
    if existing is not None and existing.finalized:
        raise AlreadySubmitted()
    return existing


def grade_if_keyed(form: Form, submission: SubmissionInput) -> Optional[GradingResult]:
    if isinstance(submission, DigitalSubmission) and form.is_graded:
        return grade_answers(form.answer_key, submission.answers)
    return None


class SubmissionPipeline:
    def __init__(self, store: SubmissionStore, dispatcher: NotificationDispatcher,
                 executor: Optional[Executor] = None) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.executor = executor

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, lambda: func(*args, **kwargs))
        except (DuplicateRecordError, StaleRecordError):
            raise
        except StoreError as exc:
            logger.exception("Store call %s failed", getattr(func, "__name__", func))
            raise PersistenceError(str(exc))

    async def _resolve(self, participant: Participant, form_id: str,
                       submission: SubmissionInput) -> Tuple[Form, Optional[SubmissionRecord]]:
        form = resolve_form(await self._run(self.store.get_form, form_id), submission.section_number, submission)
        existing = guard_duplicate(await self._run(self.store.get_submission, participant.id, form.id))
        return form, existing

    async def submit(self, participant: Participant, form_id: str, submission: SubmissionInput) -> Dict[str, Any]:
        form, existing = await self._resolve(participant, form_id, submission)
        grading = grade_if_keyed(form, submission)
        if grading is not None:
            logger.info("Graded participant=%s form=%s: %d/%d (%d%%)",
                        participant.id, form.id, grading.correct, grading.total, grading.percentage)

        outcome = await self.dispatcher.dispatch(participant, form, submission, grading)
        logger.info("Notification for participant=%s form=%s: %s", participant.id, form.id, outcome)

        await self._record(participant, form, submission, existing)
        logger.info("Submission finalized for participant=%s form=%s section=%d",
                    participant.id, form.id, submission.section_number)
        return {"accepted": True}

    async def _record(self, participant: Participant, form: Form, submission: SubmissionInput,
                      existing: Optional[SubmissionRecord]) -> None:
        now = utcnow_iso()
        patch: Dict[str, Any] = {"finalized": True, "finalized_at": now}
        if isinstance(submission, DigitalSubmission):
            patch["answers"] = submission.answers

        if existing is None:
            record = SubmissionRecord(identity=participant.id, form_id=form.id,
                                      section_number=submission.section_number, **patch)
            try:
                await self._run(self.store.insert_submission, record)
                return
            except DuplicateRecordError:
                # Someone else created the record since the guard ran
                existing = guard_duplicate(await self._run(self.store.get_submission, participant.id, form.id))
                if existing is None:
                    raise PersistenceError("Record vanished during finalize")
        try:
            await self._run(self.store.update_submission, existing.id, patch, expect_finalized=False)
        except StaleRecordError:
            raise AlreadySubmitted()

    async def save_draft(self, participant: Participant, form_id: str,
                         submission: DigitalSubmission) -> Dict[str, Any]:
        """Store in-progress answers without finalizing or notifying."""
        form, existing = await self._resolve(participant, form_id, submission)
        if existing is None:
            record = SubmissionRecord(identity=participant.id, form_id=form.id,
                                      section_number=submission.section_number, answers=submission.answers)
            try:
                saved = await self._run(self.store.insert_submission, record)
                return {"saved": True, "updated_at": saved.updated_at}
            except DuplicateRecordError:
                existing = guard_duplicate(await self._run(self.store.get_submission, participant.id, form.id))
                if existing is None:
                    raise PersistenceError("Record vanished during draft save")
        try:
            saved = await self._run(self.store.update_submission, existing.id,
                                    {"answers": submission.answers}, expect_finalized=False)
        except StaleRecordError:
            raise AlreadySubmitted()
        return {"saved": True, "updated_at": saved.updated_at}

    async def load_answers(self, participant: Participant, form_id: str) -> Optional[Dict[str, Any]]:
        record = await self._run(self.store.get_submission, participant.id, form_id)
        return record.answers if record is not None else None

    async def list_section(self, participant: Participant, section_number: int) -> List[Dict[str, Any]]:
        forms = await self._run(self.store.list_forms, section_number)
        items = []
        for form in forms:
            record = await self._run(self.store.get_submission, participant.id, form.id)
            items.append({
                "id": form.id,
                "title": form.title,
                "description": form.description,
                "position": form.position,
                "kind": form.modality.value,
                "submitted": bool(record is not None and record.finalized),
            })
        return items
