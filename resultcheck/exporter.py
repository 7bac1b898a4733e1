"""
exporter.py - Result Export
===========================
Writes one row per subject, in import order, to an Excel or CSV file.

Output columns:
---------------
- UIN, Nationality, Passport Number : identity fields as imported
- Covid test result                 : POSITIVE / NEGATIVE / PENDING / INVALID,
                                      NO RESULT when the API knows of no test,
                                      blank when the subject was never retrieved
- Swab Reason, Produced At          : from the first result, when there is one
- Everything after column C of the input, under its original header
"""

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
from openpyxl.utils import get_column_letter

from .subjects import Session


logger = logging.getLogger(__name__)

SHEET_NAME = 'test_results'

BASE_COLUMNS = [
    'UIN',
    'Nationality',
    'Passport Number',
    'Covid test result',
    'Swab Reason',
    'Produced At',
]


def output_columns(session: Session) -> List[str]:
    """Base columns, then the extra input columns that don't clash with them."""
    extra = [h for h in session.column_headers[3:] if h and h not in BASE_COLUMNS]
    return BASE_COLUMNS + extra


def build_rows(session: Session) -> List[Dict[str, Any]]:
    rows = []
    for subject in session.subjects.values():
        produced_at = subject.produced_at
        row = dict(subject.other_info)
        row.update({
            'UIN': subject.uin,
            'Nationality': subject.nationality,
            'Passport Number': subject.passport,
            'Covid test result': subject.result_code or '',
            'Swab Reason': subject.swab_reason or '',
            'Produced At': produced_at.strftime('%Y-%m-%d %H:%M:%S') if produced_at else '',
        })
        rows.append(row)
    return rows


def export_filename(now: datetime | None = None, fmt: str = 'xlsx') -> str:
    """e.g. status-20260131-094512.xlsx"""
    now = now or datetime.now()
    return f"status-{now:%Y%m%d-%H%M%S}.{fmt}"


def export_results(session: Session, output_dir: str | Path, fmt: str = 'xlsx') -> Path:
    """
    Write the session's subjects to a new file in output_dir.

    Args:
        session: The session to export
        output_dir: Directory for the file, created if needed
        fmt: 'xlsx' or 'csv'

    Returns:
        Path of the written file
    """
    if fmt not in ('xlsx', 'csv'):
        raise ValueError(f"Unsupported export format: {fmt}")

    output_path = Path(output_dir) / export_filename(fmt=fmt)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    columns = output_columns(session)
    rows = build_rows(session)

    if fmt == 'csv':
        with open(output_path, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=columns, extrasaction='ignore')
            writer.writeheader()
            writer.writerows(rows)
    else:
        df = pd.DataFrame(rows, columns=columns)
        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name=SHEET_NAME, index=False)
            sheet = writer.sheets[SHEET_NAME]
            for i in range(1, len(columns) + 1):
                sheet.column_dimensions[get_column_letter(i)].width = 15

    logger.info(f"Results written to {output_path.resolve()}")
    return output_path
