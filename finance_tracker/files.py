import csv
import io
import json
import os
import zipfile
from xml.etree.ElementTree import ParseError

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from .errors import ImportFileError
from .rows import cell_text

ALLOWED_EXTENSIONS = {".xlsx", ".xls", ".csv", ".json"}
MIMETYPE_EXTENSIONS = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-excel": ".xls",
    "text/csv": ".csv",
    "application/json": ".json",
}


def resolve_extension(filename, mimetype=None):
    extension = os.path.splitext((filename or "").strip().lower())[1]
    if extension in ALLOWED_EXTENSIONS:
        return extension
    return MIMETYPE_EXTENSIONS.get((mimetype or "").split(";")[0].strip().lower(), extension)


def is_allowed_file(filename, mimetype=None):
    return resolve_extension(filename, mimetype) in ALLOWED_EXTENSIONS


def decode_bytes(file_bytes):
    for encoding in ["utf-8-sig", "utf-8", "cp1252", "latin-1"]:
        try:
            return file_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    return None


def read_csv_grid(file_bytes):
    content = decode_bytes(file_bytes)
    if content is None:
        raise ImportFileError("Could not read file encoding. Please re-save as CSV UTF-8.")
    try:
        return list(csv.reader(io.StringIO(content)))
    except csv.Error as exc:
        raise ImportFileError(f"Could not parse CSV: {exc}") from exc


def read_xlsx_grid(file_bytes):
    try:
        workbook = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, ParseError, KeyError, ValueError, OSError) as exc:
        raise ImportFileError(f"Could not read spreadsheet: {exc}") from exc
    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        # read-only sheets are parsed lazily, row by row
        return [list(values) for values in sheet.iter_rows(values_only=True)]
    except (ParseError, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise ImportFileError(f"Could not read spreadsheet: {exc}") from exc
    finally:
        workbook.close()


def read_xls_grid(file_bytes):
    try:
        book = xlrd.open_workbook(file_contents=file_bytes)
    except (xlrd.XLRDError, CompDocError, ValueError, OSError) as exc:
        raise ImportFileError(f"Could not read spreadsheet: {exc}") from exc
    if book.nsheets == 0:
        return []
    sheet = book.sheet_by_index(0)
    grid = []
    for row_idx in range(sheet.nrows):
        values = []
        for cell in sheet.row(row_idx):
            if cell.ctype == xlrd.XL_CELL_DATE:
                values.append(xlrd.xldate_as_datetime(cell.value, book.datemode))
            else:
                values.append(cell.value)
        grid.append(values)
    return grid


def rows_from_grid(grid):
    """Zip data rows with the header row.

    Returns ``(rows, positions)``. Blank lines are dropped; each kept row
    keeps its 0-based position below the header, blank lines included.
    """
    lines = [(idx, row) for idx, row in enumerate(grid) if any(cell_text(cell) for cell in row)]
    if len(lines) < 2:
        raise ImportFileError("File must contain at least a header row and one data row")

    header_idx, header_values = lines[0]
    header = [cell_text(cell) for cell in header_values]
    rows = []
    positions = []
    for line_idx, values in lines[1:]:
        row = {}
        for idx, name in enumerate(header):
            if not name or idx >= len(values):
                continue
            row.setdefault(name, values[idx])
        rows.append(row)
        positions.append(line_idx - header_idx - 1)
    return rows, positions


def parse_json_rows(file_bytes):
    content = decode_bytes(file_bytes)
    if content is None:
        raise ImportFileError("Could not read file encoding.")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ImportFileError(f"Invalid JSON: {exc}") from exc

    # Exports wrapped as {"transactions": [...]} are accepted as well.
    if isinstance(data, dict) and isinstance(data.get("transactions"), list):
        data = data["transactions"]
    if not isinstance(data, list):
        raise ImportFileError("JSON import must be an array of transaction objects")
    if not data:
        raise ImportFileError("JSON import contains no transactions")
    return data


def read_import_file(filename, file_bytes, mimetype=None):
    extension = resolve_extension(filename, mimetype)
    if extension == ".json":
        rows = parse_json_rows(file_bytes)
        return rows, list(range(len(rows)))
    if extension == ".csv":
        grid = read_csv_grid(file_bytes)
    elif extension == ".xlsx":
        grid = read_xlsx_grid(file_bytes)
    elif extension == ".xls":
        grid = read_xls_grid(file_bytes)
    else:
        raise ImportFileError(f"Unsupported file type: {extension or filename or 'unknown'}")
    return rows_from_grid(grid)


def parse_import_file(filename, file_bytes, mimetype=None):
    return read_import_file(filename, file_bytes, mimetype)[0]
