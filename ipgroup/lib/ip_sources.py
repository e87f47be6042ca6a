"""Input collection for ip_classify: text files, argv and spreadsheets."""
from __future__ import annotations

import codecs
import csv
import io
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import chardet

BOM_TABLE = [
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
]
# tried after a confident chardet guess, or alone when there is none
FALLBACK_ENCODINGS = ("utf-8", "gb18030", "cp932")
SAMPLE_SIZE = 65536
DEFAULT_COLUMN = 2


class InputError(RuntimeError):
    pass


def unique(items: Iterable[str]) -> List[str]:
    """Drop repeated values, keeping the first occurrence of each."""
    seen: Dict[str, None] = {}
    result: List[str] = []
    for item in items:
        if item in seen:
            continue
        seen[item] = None
        result.append(item)
    return result


def _clean(values: Iterable[object]) -> List[str]:
    result: List[str] = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            result.append(text)
    return result


def from_args(args: Iterable[str]) -> List[str]:
    return _clean(args)


def _decode(raw: bytes) -> str:
    for bom, name in BOM_TABLE:
        if raw.startswith(bom):
            return raw.decode(name)
    candidates: List[str] = []
    detected = chardet.detect(raw[:SAMPLE_SIZE])
    enc = detected.get("encoding") or ""
    conf = detected.get("confidence") or 0
    if enc and conf >= 0.5:
        candidates.append(enc)
    candidates.extend(FALLBACK_ENCODINGS)
    for cand in candidates:
        try:
            return raw.decode(cand)
        except (LookupError, UnicodeDecodeError):
            continue
    raise UnicodeDecodeError(candidates[-1], raw, 0, len(raw), "no candidate encoding fits")


def _read_text(path: Path) -> str:
    try:
        return _decode(path.read_bytes())
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"cannot read {path}: {exc}") from exc


def read_lines(path: Path) -> List[str]:
    return _clean(_read_text(path).splitlines())


def _sniff_dialect(sample: str):
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|")
    except csv.Error:
        return csv.excel


def read_csv_column(path: Path, column: int = DEFAULT_COLUMN) -> List[str]:
    """Return ``column`` (1-based) of every row after the header row."""
    if column < 1:
        raise InputError(f"column must be >= 1, got {column}")
    text = _read_text(path)
    try:
        rows = list(csv.reader(io.StringIO(text, newline=""), _sniff_dialect(text[:SAMPLE_SIZE])))
    except csv.Error as exc:
        raise InputError(f"cannot read {path}: {exc}") from exc
    return _clean(row[column - 1] for row in rows[1:] if len(row) >= column)


def read_xlsx_column(path: Path, column: int = DEFAULT_COLUMN, sheet: Optional[str] = None) -> List[str]:
    if column < 1:
        raise InputError(f"column must be >= 1, got {column}")
    try:
        import openpyxl  # type: ignore
    except ImportError as exc:
        raise InputError(f"reading {path} requires openpyxl (pip install 'ipgroup[xlsx]'): {exc}") from exc
    try:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except Exception as exc:
        raise InputError(f"cannot read {path}: {exc}") from exc
    try:
        if sheet is not None:
            if sheet not in workbook.sheetnames:
                raise InputError(f"{path}: no sheet named {sheet!r}")
            worksheet = workbook[sheet]
        else:
            worksheet = workbook.worksheets[0]
        values = [
            row[column - 1]
            for row in worksheet.iter_rows(min_row=2, values_only=True)
            if len(row) >= column
        ]
    finally:
        workbook.close()
    return _clean(values)
