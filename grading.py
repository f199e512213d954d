"""Answer-key grading for digital questionnaires.

Grading is a pure comparison: each expected value in a form's answer key is
compared with the participant's answer after trimming and case-folding.
Questions that are not in the answer key are never graded, and a missing
answer counts as a blank string.

The module also works as a small command-line tool:

    python3 grading.py --forms forms.json --form-id f-quiz answers.json

which prints the grading result for a JSON object of answers.
"""

import argparse
import html
import json
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class QuestionGrade:
    key: str
    expected: str
    submitted: Any
    correct: bool


@dataclass(frozen=True)
class GradingResult:
    correct: int
    total: int
    percentage: int
    questions: List[QuestionGrade] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correct": self.correct,
            "total": self.total,
            "percentage": self.percentage,
            "questions": [
                {"key": q.key, "expected": q.expected, "submitted": q.submitted, "correct": q.correct}
                for q in self.questions
            ],
        }


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(v) for v in value)
    return str(value)


def normalize(value: Any) -> str:
    """Canonical comparison form of an answer: trimmed and lowercased."""
    try:
        return _as_text(value).strip().lower()
    except Exception:
        # Values that cannot be rendered grade as blank
        return ""


def percentage(correct: int, total: int) -> int:
    """Integer percentage rounded half-up; 0 when there is nothing to grade."""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def grade_answers(answer_key: Mapping[str, Any], answers: Optional[Mapping[str, Any]]) -> GradingResult:
    """Grade submitted answers against an answer key.

    Parameters
    ----------
    answer_key : mapping
        Question key to expected value.
    answers : mapping or None
        Question key to submitted value.  Keys absent from the answer key
        are ignored.

    Returns
    -------
    GradingResult
        Per-question outcomes plus ``correct``, ``total`` and ``percentage``.
    """
    if not isinstance(answers, Mapping):
        answers = {}
    questions: List[QuestionGrade] = []
    for qkey, expected in answer_key.items():
        submitted = answers.get(qkey)
        ok = normalize(submitted) == normalize(expected)
        questions.append(QuestionGrade(key=qkey, expected=_as_text(expected), submitted=submitted, correct=ok))
    correct = sum(1 for q in questions if q.correct)
    total = len(questions)
    return GradingResult(correct=correct, total=total, percentage=percentage(correct, total), questions=questions)


def render_text_report(result: GradingResult) -> str:
    lines = [f"Score: {result.correct}/{result.total} ({result.percentage}%)"]
    for q in result.questions:
        submitted = _as_text(q.submitted) if q.submitted is not None else "(blank)"
        mark = "correct" if q.correct else "incorrect"
        lines.append(f"- {q.key}: expected {q.expected!r}, got {submitted!r} ({mark})")
    return "\n".join(lines)


_CELL = 'style="padding:6px 8px;border-bottom:1px solid #eee;"'
_HEAD = 'style="text-align:left;padding:6px 8px;border-bottom:1px solid #ddd;"'


def render_html_report(result: GradingResult) -> str:
    """HTML score table for the notification email.  All values are escaped."""
    rows = []
    for q in result.questions:
        submitted = _as_text(q.submitted) if q.submitted is not None else "(blank)"
        rows.append(
            "<tr>"
            f"<td {_CELL}>{html.escape(q.key)}</td>"
            f"<td {_CELL}>{html.escape(q.expected)}</td>"
            f"<td {_CELL}>{html.escape(submitted)}</td>"
            f"<td {_CELL}>{'&#9989;' if q.correct else '&#10060;'}</td>"
            "</tr>"
        )
    return (
        '<div style="margin:14px 0">'
        f'<div style="font-weight:600;margin-bottom:6px">Score: {result.correct}/{result.total} ({result.percentage}%)</div>'
        '<table cellpadding="0" cellspacing="0" style="border-collapse:collapse;font-size:13px;">'
        f"<thead><tr><th {_HEAD}>Question</th><th {_HEAD}>Correct</th><th {_HEAD}>Submitted</th><th {_HEAD}>Result</th></tr></thead>"
        f"<tbody>{''.join(rows)}</tbody>"
        "</table></div>"
    )


def main() -> None:
    from form_schema import load_forms

    parser = argparse.ArgumentParser(description="Grade a set of answers against a form's answer key")
    parser.add_argument("--forms", required=True, help="Path to forms JSON file")
    parser.add_argument("--form-id", required=True, help="Form whose answer key is used")
    parser.add_argument("answers", help="Path to a JSON object of question key -> answer")
    args = parser.parse_args()

    try:
        forms = load_forms(args.forms)
    except Exception as exc:
        print(f"Error loading forms: {exc}", file=sys.stderr)
        sys.exit(1)
    form = forms.get(args.form_id)
    if form is None:
        print(f"Error: form {args.form_id} not found", file=sys.stderr)
        sys.exit(1)
    if not form.answer_key:
        print(f"Error: form {args.form_id} has no answer key", file=sys.stderr)
        sys.exit(1)

    with open(args.answers, "r", encoding="utf-8") as f:
        answers = json.load(f)
    result = grade_answers(form.answer_key, answers)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
