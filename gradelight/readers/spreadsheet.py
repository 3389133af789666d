"""
Tabular grade sources: CSV and XLSX readers plus the registry that picks one
by file extension or content type.

Rows are yielded for every line below the header up to the last non-blank
one, so callers can number them by position. An interior blank line comes
back as an empty dict. Non-blank cells past the header's width are joined
under ``OVERFLOW_KEY``, which can never be a column name.
"""

import csv
import io
import os
import zipfile
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from ..core.exceptions import ValidationError
from ..core.interfaces import SpreadsheetReader

Content = Union[bytes, str]

OVERFLOW_KEY = ""


def _trim_header(record: Sequence[str]) -> List[str]:
    header = [cell.strip() for cell in record]
    while header and not header[-1]:
        header.pop()
    return header


def _split_header(records: Iterator[List[str]]) -> Tuple[List[str], Iterator[List[str]]]:
    for record in records:
        header = _trim_header(record)
        if header:
            return header, records
    return [], iter(())


def _pair_rows(header: Sequence[str], rows: Iterable[Sequence[str]]) -> Iterator[Dict[str, str]]:
    blank_run = 0
    for row in rows:
        cells = [cell.strip() for cell in row]
        if not any(cells):
            blank_run += 1
            continue
        for _ in range(blank_run):
            yield {}
        blank_run = 0
        cells += [""] * (len(header) - len(cells))
        paired = dict(zip(header, cells))
        extra = [cell for cell in cells[len(header):] if cell]
        if extra:
            paired[OVERFLOW_KEY] = ", ".join(extra)
        yield paired


class CSVReader:
    """Comma-separated text, UTF-8 with an optional byte-order mark."""

    def __init__(self, delimiter: str = ","):
        self._delimiter = delimiter

    def _records(self, content: Content) -> Iterator[List[str]]:
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ValidationError(f"CSV file is not valid UTF-8: {e}", error_code="invalid_encoding")
        elif content.startswith("\ufeff"):
            content = content[1:]
        try:
            for record in csv.reader(io.StringIO(content), delimiter=self._delimiter):
                yield record
        except csv.Error as e:
            raise ValidationError(f"Malformed CSV: {e}", error_code="malformed_csv")

    def parse_header(self, content: Content) -> List[str]:
        header, _ = _split_header(self._records(content))
        return header

    def parse_rows(self, content: Content) -> Iterator[Dict[str, str]]:
        header, records = _split_header(self._records(content))
        return _pair_rows(header, records)


class XLSXReader:
    """First worksheet of an Excel workbook."""

    @staticmethod
    def _cell_text(value, number_format: Optional[str] = None) -> str:
        if value is None:
            return ""
        if isinstance(value, float) and value.is_integer():
            # National IDs typed into Excel come back as floats
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            text = str(value)
            # A "00000000000" format displays the leading zeros the stored number lost
            if number_format and set(number_format) == {"0"}:
                text = text.zfill(len(number_format))
            return text
        return str(value).strip()

    def _records(self, content: bytes) -> Iterator[List[str]]:
        from openpyxl import load_workbook
        from openpyxl.utils.exceptions import InvalidFileException

        try:
            workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise ValidationError(f"Unreadable XLSX workbook: {e}", error_code="malformed_xlsx")
        try:
            if not workbook.worksheets:
                return
            for row in workbook.worksheets[0].iter_rows():
                yield [self._cell_text(cell.value, cell.number_format) for cell in row]
        finally:
            workbook.close()

    def _split(self, content: bytes):
        return _split_header(iter(list(self._records(content))))

    def parse_header(self, content: bytes) -> List[str]:
        header, _ = self._split(content)
        return header

    def parse_rows(self, content: bytes) -> Iterator[Dict[str, str]]:
        header, records = self._split(content)
        return _pair_rows(header, records)


class ReaderRegistry:
    """Maps file extensions and content types to reader instances.

    New formats are added with ``register`` and never require changes to the
    import pipeline.
    """

    def __init__(self, default_extension: Optional[str] = ".csv"):
        self._by_extension: Dict[str, SpreadsheetReader] = {}
        self._by_content_type: Dict[str, SpreadsheetReader] = {}
        self._default_extension = default_extension

    def register(self, reader: SpreadsheetReader, extensions: Iterable[str] = (),
                 content_types: Iterable[str] = ()) -> None:
        if not isinstance(reader, SpreadsheetReader):
            raise TypeError(f"{reader!r} does not provide parse_header/parse_rows")
        for extension in extensions:
            self._by_extension[extension.lower()] = reader
        for content_type in content_types:
            self._by_content_type[content_type.lower()] = reader

    def reader_for(self, filename: Optional[str] = None, content_type: Optional[str] = None) -> SpreadsheetReader:
        if filename:
            extension = os.path.splitext(filename)[1].lower()
            if extension in self._by_extension:
                return self._by_extension[extension]
        if content_type:
            base_type = content_type.split(";")[0].strip().lower()
            if base_type in self._by_content_type:
                return self._by_content_type[base_type]
        if not filename and not content_type and self._default_extension:
            return self._by_extension[self._default_extension]
        raise ValidationError(
            "Unsupported spreadsheet format",
            error_code="unsupported_format",
            details={'filename': filename, 'content_type': content_type,
                     'supported': sorted(self._by_extension)}
        )

    @property
    def extensions(self) -> List[str]:
        return sorted(self._by_extension)


def default_registry() -> ReaderRegistry:
    registry = ReaderRegistry()
    registry.register(CSVReader(), extensions=[".csv", ".txt"],
                      content_types=["text/csv", "application/csv", "text/plain"])
    registry.register(XLSXReader(), extensions=[".xlsx"],
                      content_types=["application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"])
    return registry
