"""Storage of forms and submission records.

A store owns the forms catalogue and at most one submission record per
(participant, form).  It enforces that uniqueness itself and offers a
conditional update so a finalized record is never overwritten, even when two
requests race.

Two engines are provided: ``MemoryStore`` keeps everything in process and
``JsonFileStore`` persists records to a JSON file with atomic replaces.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from answer_crypto import AnswerCipher, AnswerCipherError
from form_schema import Form, load_forms

logger = logging.getLogger("studyforms.store")

_PATCHABLE = ("finalized", "finalized_at", "answers", "section_number")


class StoreError(Exception):
    """Any failure of the storage engine."""


class DuplicateRecordError(StoreError):
    """A record already exists for this (identity, form)."""


class StaleRecordError(StoreError):
    """A conditional update found the record in an unexpected state."""


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SubmissionRecord:
    identity: str
    form_id: str
    section_number: int
    finalized: bool = False
    finalized_at: Optional[str] = None
    updated_at: Optional[str] = None
    answers: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class SubmissionStore:
    """In-process store; subclasses add durability by overriding ``_flush``."""

    def __init__(self, forms: Optional[Dict[str, Form]] = None, cipher: Optional[AnswerCipher] = None) -> None:
        self._forms: Dict[str, Form] = dict(forms or {})
        self._cipher = cipher
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._index: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    # -- forms --------------------------------------------------------------

    def get_form(self, form_id: str) -> Optional[Form]:
        return self._forms.get(form_id)

    def list_forms(self, section_number: int) -> List[Form]:
        forms = [f for f in self._forms.values() if f.section_number == section_number and f.is_active]
        return sorted(forms, key=lambda f: (f.position, f.title))

    def replace_forms(self, forms: Dict[str, Form]) -> None:
        self._forms = dict(forms)

    # -- records ------------------------------------------------------------

    def get_submission(self, identity: str, form_id: str) -> Optional[SubmissionRecord]:
        with self._lock:
            record_id = self._index.get((identity, form_id))
            row = self._rows.get(record_id) if record_id else None
        return self._from_row(row) if row is not None else None

    def list_submissions(self) -> List[SubmissionRecord]:
        with self._lock:
            rows = list(self._rows.values())
        return [self._from_row(r) for r in rows]

    def insert_submission(self, record: SubmissionRecord) -> SubmissionRecord:
        if not record.updated_at:
            record = replace(record, updated_at=utcnow_iso())
        row = self._to_row(record)
        with self._lock:
            key = (record.identity, record.form_id)
            if key in self._index:
                raise DuplicateRecordError(f"Record already exists for {record.identity}/{record.form_id}")
            rows = dict(self._rows)
            rows[record.id] = row
            self._commit(rows)
            self._index[key] = record.id
        return record

    def update_submission(self, record_id: str, patch: Dict[str, Any],
                          expect_finalized: Optional[bool] = False) -> SubmissionRecord:
        """Apply ``patch`` to a record.

        When ``expect_finalized`` is not None the update only happens if the
        record's finalized flag still has that value, otherwise
        ``StaleRecordError`` is raised.
        """
        unknown = set(patch) - set(_PATCHABLE)
        if unknown:
            raise StoreError("Cannot patch fields: " + ", ".join(sorted(unknown)))
        with self._lock:
            current = self._rows.get(record_id)
            if current is None:
                raise StoreError(f"No record with id {record_id}")
            if expect_finalized is not None and bool(current.get("finalized")) != expect_finalized:
                raise StaleRecordError(f"Record {record_id} changed state")
            updated = replace(self._from_row(current), updated_at=utcnow_iso(), **patch)
            rows = dict(self._rows)
            rows[record_id] = self._to_row(updated)
            self._commit(rows)
        return updated

    # -- serialization ------------------------------------------------------

    def _commit(self, rows: Dict[str, Dict[str, Any]]) -> None:
        self._flush(rows)
        self._rows = rows

    def _flush(self, rows: Dict[str, Dict[str, Any]]) -> None:
        pass

    def _load_rows(self, rows: Dict[str, Dict[str, Any]]) -> None:
        self._rows = dict(rows)
        self._index = {(r["identity"], r["form_id"]): rid for rid, r in self._rows.items()}

    def _to_row(self, record: SubmissionRecord) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "id": record.id,
            "identity": record.identity,
            "form_id": record.form_id,
            "section_number": record.section_number,
            "finalized": record.finalized,
            "finalized_at": record.finalized_at,
            "updated_at": record.updated_at,
        }
        if record.answers is not None:
            if self._cipher is not None:
                row["answers_enc"] = self._cipher.encrypt(record.answers)
            else:
                row["answers"] = record.answers
        return row

    def _from_row(self, row: Dict[str, Any]) -> SubmissionRecord:
        answers = row.get("answers")
        if "answers_enc" in row:
            if self._cipher is None:
                raise StoreError(f"Record {row.get('id')} holds encrypted answers but no key is configured")
            try:
                answers = self._cipher.decrypt(row["answers_enc"])
            except AnswerCipherError as exc:
                raise StoreError(f"Cannot decrypt answers of record {row.get('id')}: {exc}")
        return SubmissionRecord(
            id=row["id"],
            identity=row["identity"],
            form_id=row["form_id"],
            section_number=int(row["section_number"]),
            finalized=bool(row.get("finalized", False)),
            finalized_at=row.get("finalized_at"),
            updated_at=row.get("updated_at"),
            answers=answers,
        )


class MemoryStore(SubmissionStore):
    pass


class JsonFileStore(SubmissionStore):
    """Forms from a forms file, records persisted to a JSON file."""

    def __init__(self, forms_path: str, records_path: str, cipher: Optional[AnswerCipher] = None) -> None:
        super().__init__(load_forms(forms_path), cipher)
        self.forms_path = forms_path
        self.records_path = records_path
        self._load_rows(self._read_records())

    def reload_forms(self) -> int:
        forms = load_forms(self.forms_path)
        self.replace_forms(forms)
        return len(forms)

    def _read_records(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.isfile(self.records_path):
            return {}
        with open(self.records_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        rows = data.get("submissions", []) if isinstance(data, dict) else []
        return {r["id"]: r for r in rows if isinstance(r, dict) and "id" in r}

    def _flush(self, rows: Dict[str, Dict[str, Any]]) -> None:
        directory = os.path.dirname(self.records_path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix="submissions.", suffix=".json", dir=directory)
        except OSError as exc:
            raise StoreError(f"Cannot write {self.records_path}: {exc}")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"submissions": list(rows.values())}, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp, self.records_path)
        except (OSError, TypeError, ValueError) as exc:
            logger.exception("Failed to persist submissions file at %s", self.records_path)
            raise StoreError(f"Cannot write {self.records_path}: {exc}")
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
