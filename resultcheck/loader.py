"""
loader.py - Input File Loader
==============================
This module imports people to look up from Excel (.xlsx, .xls) or CSV files
into a Session, validating and deduplicating as it goes.

Expected Layout:
----------------
    Column A : UIN (header cell A1 must read "UIN")
    Column B : Nationality (2-letter country code)
    Column C : Passport number
    Column D+: Anything else. Kept as-is and copied into the export.

Each data row becomes one of:
- A UIN subject      : column A is non-empty and a valid UIN
- A passport subject : column A is empty, B is a 2-letter code, C is non-empty
- Invalid            : counted and logged
- Duplicate          : same dedup key as an earlier row, counted and logged

Rows where both A and B are empty are ignored and not counted at all.

Worksheets are skipped (with a warning) when hidden, or when A1 is not "UIN".
"""

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple

import pandas as pd
from openpyxl.utils import get_column_letter

from .subjects import IdType, Session, Subject
from .validation import clean_identifier, is_valid_uin


logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = ('.xlsx', '.xlsm', '.xls')
HEADER_FIRST_CELL = 'UIN'

# Columns A-C hold identity fields; everything after is carried through
IDENTITY_COLUMNS = 3


# =============================================================================
# WORKSHEET READING
# =============================================================================

def _hidden_sheets(xl: pd.ExcelFile) -> set:
    """Names of worksheets that are not visible. Only openpyxl books expose this."""
    book = xl.book
    worksheets = getattr(book, 'worksheets', None)
    if worksheets is None:
        return set()
    return {ws.title for ws in worksheets if ws.sheet_state != 'visible'}


def _as_text(df: pd.DataFrame) -> pd.DataFrame:
    # Every cell as a string, blanks as '' so .strip() etc. always work
    return df.fillna('').astype(str)


def read_worksheets(session: Session, path: Path) -> Iterator[Tuple[str, pd.DataFrame]]:
    """
    Yield (worksheet name, raw cell grid) for every usable worksheet.

    The grid has no header applied: row 0 is the header row, and cells are
    plain strings.
    """
    if path.suffix.lower() == '.csv':
        df = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
        yield path.stem, _as_text(df)
        return

    with pd.ExcelFile(path) as xl:
        hidden = _hidden_sheets(xl)
        for name in xl.sheet_names:
            # Users often don't know about their hidden worksheets
            if name in hidden:
                session.log(
                    f"WARNING: file '{path.name}' worksheet '{name}' sheet is hidden, ignoring",
                    level=logging.WARNING,
                )
                continue
            df = xl.parse(name, header=None, dtype=str)
            yield name, _as_text(df)


# =============================================================================
# IMPORT
# =============================================================================

def _cell(row: List[str], index: int) -> str:
    return row[index] if index < len(row) else ''


def _address(column: int, row_number: int) -> str:
    """Spreadsheet address for a 0-based column and 1-based row, e.g. A2."""
    return f"{get_column_letter(column + 1)}{row_number}"


def import_worksheet(session: Session, file_name: str, sheet: str, grid: pd.DataFrame):
    """Validate and insert every row of one worksheet into the session."""
    if grid.empty or grid.iat[0, 0].strip() != HEADER_FIRST_CELL:
        session.log(
            f"WARNING: file '{file_name}' worksheet '{sheet}' cell A1 does not contain 'UIN'",
            level=logging.WARNING,
        )
        return

    headers = [h.strip() for h in grid.iloc[0].tolist()]
    session.column_headers = headers
    stats = session.input_stats

    for index, values in enumerate(grid.iloc[1:].itertuples(index=False, name=None), start=2):
        row = list(values)
        raw_id, raw_nationality, raw_passport = (_cell(row, i) for i in range(IDENTITY_COLUMNS))

        if raw_id.strip() == '' and raw_nationality.strip() == '':
            continue

        stats.total_read += 1

        uin = clean_identifier(raw_id)
        nationality = raw_nationality.strip().upper()
        passport = clean_identifier(raw_passport)
        id_type = IdType.PASSPORT if uin == '' else IdType.UIN

        # Something that cleans down to nothing counts as read but invalid
        if id_type == IdType.UIN and not is_valid_uin(uin):
            stats.invalid += 1
            session.log(
                f"Invalid UIN: worksheet '{sheet}' cell '{_address(0, index)}' value '{raw_id}'",
                level=logging.WARNING,
            )
            continue
        if id_type == IdType.PASSPORT and (len(nationality) != 2 or passport == ''):
            stats.invalid += 1
            session.log(
                f"Invalid Passport Number or Country Code: worksheet '{sheet}' "
                f"cell '{_address(1, index)}' value '{raw_nationality}' '{raw_passport}'",
                level=logging.WARNING,
            )
            continue

        other_info = {
            header: _cell(row, i)
            for i, header in enumerate(headers)
            if i >= IDENTITY_COLUMNS and header
        }
        subject = Subject(
            id_type=id_type,
            uin=uin,
            nationality=nationality,
            passport=passport,
            other_info=other_info,
        )

        if not session.add_subject(subject):
            stats.duplicate += 1
            session.log(
                f"Duplicate ID: worksheet '{sheet}' cell '{_address(0, index)}' "
                f"value '{raw_id}' '{raw_nationality}' '{raw_passport}'",
                level=logging.WARNING,
            )


def import_file(session: Session, filepath: str | Path):
    """
    Import one Excel or CSV file into the session.

    Raises:
        FileNotFoundError: If the input file doesn't exist
        ValueError: If the file type is unsupported
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {filepath}")

    suffix = path.suffix.lower()
    if suffix not in EXCEL_SUFFIXES and suffix != '.csv':
        raise ValueError(
            f"Unsupported file type: {path.suffix}. "
            "Only .csv, .xlsx, .xlsm and .xls files are supported."
        )

    before = len(session.subjects)
    for sheet, grid in read_worksheets(session, path):
        import_worksheet(session, path.name, sheet, grid)

    logger.info(f"Imported {len(session.subjects) - before} new subjects from {path.name}")


def import_files(session: Session, paths: Iterable[str | Path]):
    for path in paths:
        import_file(session, path)
