"""Export of submission records for researchers.

Writes one row per submission record to ``summary.csv`` and
``summary.xlsx``.  Digital forms with an answer key get their stored
answers re-graded so the score appears next to the record.

    python3 reporting.py --forms forms.json --submissions submissions.json --out_dir results
"""

import argparse
import os
import sys
from typing import Dict, List

from grading import grade_answers
from submissions import SubmissionStore

FIELDNAMES = [
    "participant_id",
    "form_id",
    "form_title",
    "section_number",
    "status",
    "finalized_at",
    "correct",
    "total",
    "percentage",
]


def build_summary_rows(store: SubmissionStore) -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = []
    for record in store.list_submissions():
        form = store.get_form(record.form_id)
        row: Dict[str, object] = {
            "participant_id": record.identity,
            "form_id": record.form_id,
            "form_title": form.title if form else "",
            "section_number": record.section_number,
            "status": "finalized" if record.finalized else "draft",
            "finalized_at": record.finalized_at or "",
            "correct": None,
            "total": None,
            "percentage": None,
        }
        if form is not None and form.is_graded and record.answers is not None:
            result = grade_answers(form.answer_key, record.answers)
            row.update(correct=result.correct, total=result.total, percentage=result.percentage)
        rows.append(row)
    rows.sort(key=lambda r: (r["section_number"], r["form_id"], r["participant_id"]))
    return rows


def write_summary_csv(csv_path: str, rows: List[Dict[str, object]]) -> None:
    """Write summary CSV with a canonical field order."""
    from csv import DictWriter

    os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
    with open(csv_path, "w", newline="", encoding="utf-8") as fh:
        writer = DictWriter(fh, fieldnames=FIELDNAMES)
        writer.writeheader()
        for r in rows:
            writer.writerow({k: r.get(k) for k in FIELDNAMES})


def write_summary_xlsx(xlsx_path: str, rows: List[Dict[str, object]]) -> None:
    from openpyxl import Workbook
    from openpyxl.styles import Font, PatternFill

    wb = Workbook()
    ws = wb.active
    ws.title = "Submissions"
    ws.append(FIELDNAMES)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    yellow_fill = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")

    for r in rows:
        ws.append([r.get(k) for k in FIELDNAMES])
        # Drafts stand out: they were never submitted
        if r.get("status") == "draft":
            ws.cell(row=ws.max_row, column=FIELDNAMES.index("status") + 1).fill = yellow_fill

    for col, name in enumerate(FIELDNAMES, start=1):
        ws.column_dimensions[chr(64 + col)].width = 28 if name in ("form_title", "finalized_at") else 16

    os.makedirs(os.path.dirname(xlsx_path) or ".", exist_ok=True)
    wb.save(xlsx_path)


def main() -> None:
    from answer_crypto import cipher_from_env
    from submissions import JsonFileStore

    parser = argparse.ArgumentParser(description="Export submission records to CSV and XLSX")
    parser.add_argument("--forms", required=True, help="Path to forms JSON file")
    parser.add_argument("--submissions", required=True, help="Path to submissions JSON file")
    parser.add_argument("--out_dir", required=True, help="Directory to write summary.csv and summary.xlsx")
    args = parser.parse_args()

    try:
        store = JsonFileStore(args.forms, args.submissions, cipher_from_env())
        rows = build_summary_rows(store)
    except Exception as exc:
        print(f"Error loading submissions: {exc}", file=sys.stderr)
        sys.exit(1)

    write_summary_csv(os.path.join(args.out_dir, "summary.csv"), rows)
    write_summary_xlsx(os.path.join(args.out_dir, "summary.xlsx"), rows)
    print(f"Export complete: {len(rows)} records written to {args.out_dir}")


if __name__ == "__main__":
    main()
