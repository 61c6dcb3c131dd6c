"""Google Sheets content source.

A sheet is a queue of posts: one column holds the text (rich formatting
allowed), another column is empty until the row has been posted. Rows are
picked at random among the available ones so a channel does not visibly
drain the sheet top to bottom.
"""
from __future__ import annotations

import html
import random
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from core.logger import get_logger
from core.stage_config import SheetCredentials, SheetRef
from utils.client_cache import get_sheets_service

log = get_logger("Sheets")

MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")
CELL_FIELDS = "sheets(data(rowData(values(userEnteredValue,formattedValue,textFormatRuns,hyperlink))))"


class SheetsError(RuntimeError):
    """Raised when the Sheets API rejects a request or cannot be reached."""


@dataclass(frozen=True)
class ContentItem:
    row_number: int
    cell_ref: str


@dataclass
class _Segment:
    text: str
    bold: bool = False
    italic: bool = False
    href: Optional[str] = None

    def same_style(self, other: "_Segment") -> bool:
        return (self.bold, self.italic, self.href) == (other.bold, other.italic, other.href)


def column_letter_to_index(column: str) -> int:
    """Zero-based index of a column letter: A -> 0, Z -> 25, AA -> 26."""

    index = 0
    for char in column.strip().upper():
        if not "A" <= char <= "Z":
            raise ValueError(f"Invalid column letter: {column!r}")
        index = index * 26 + (ord(char) - 64)
    if index == 0:
        raise ValueError("Column letter cannot be empty")
    return index - 1


def _cell(row: Sequence[Any], offset: int) -> str:
    if offset < len(row) and row[offset] is not None:
        return str(row[offset]).strip()
    return ""


def available_rows(
    rows: Sequence[Sequence[Any]],
    content_offset: int = 0,
    status_offset: int = 1,
    skip_header: bool = False,
) -> List[int]:
    """Sheet row numbers whose content cell is filled and status cell is empty.

    ``rows`` is a values/get response starting at row 1.
    """

    first_row = 2 if skip_header else 1
    data_rows = rows[1:] if skip_header else rows
    candidates = []
    for i, row in enumerate(data_rows):
        row = row or []
        if _cell(row, content_offset) and not _cell(row, status_offset):
            candidates.append(first_row + i)
    return candidates


def _utf16_to_index(text: str, utf16_offset: int) -> int:
    # Sheets reports run offsets in UTF-16 code units.
    units = 0
    for i, char in enumerate(text):
        if units >= utf16_offset:
            return i
        units += 2 if ord(char) > 0xFFFF else 1
    return len(text)


def _segments(text: str, runs: Sequence[Dict[str, Any]]) -> List[_Segment]:
    starts = sorted(
        ((_utf16_to_index(text, run.get("startIndex", 0) or 0), run.get("format") or {}) for run in runs),
        key=lambda pair: pair[0],
    )
    boundaries = sorted({0, len(text), *(start for start, _ in starts)})

    merged: List[_Segment] = []
    for begin, end in zip(boundaries, boundaries[1:]):
        fmt: Dict[str, Any] = {}
        for start, run_format in starts:
            if start <= begin:
                fmt = run_format
        seg = _Segment(
            text=text[begin:end],
            bold=bool(fmt.get("bold")),
            italic=bool(fmt.get("italic")),
            href=(fmt.get("link") or {}).get("uri") or None,
        )
        if merged and merged[-1].same_style(seg):
            merged[-1].text += seg.text
        else:
            merged.append(seg)
    return merged


def escape_markdown_v2(text: str) -> str:
    return MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def _escape_markdown_url(url: str) -> str:
    return url.replace("\\", "\\\\").replace(")", "\\)")


def _render_html(segments: List[_Segment], hyperlink: Optional[str]) -> str:
    parts = []
    for seg in segments:
        t = html.escape(seg.text, quote=False)
        if seg.bold:
            t = f"<b>{t}</b>"
        if seg.italic:
            t = f"<i>{t}</i>"
        if seg.href:
            t = f'<a href="{html.escape(seg.href, quote=True)}">{t}</a>'
        parts.append(t)
    out = "".join(parts)
    if hyperlink and not any(seg.href for seg in segments):
        out = f'<a href="{html.escape(hyperlink, quote=True)}">{out}</a>'
    return out


def _markdown_styles(seg: _Segment) -> List[tuple]:
    # Outermost first: link, bold, italic.
    styles = []
    if seg.href:
        styles.append(("link", seg.href))
    if seg.bold:
        styles.append(("bold",))
    if seg.italic:
        styles.append(("italic",))
    return styles


def _open_markdown(style: tuple) -> str:
    return {"link": "[", "bold": "*", "italic": "_"}[style[0]]


def _close_markdown(style: tuple) -> str:
    if style[0] == "link":
        return f"]({_escape_markdown_url(style[1])})"
    return _open_markdown(style)


def _render_markdown_v2(segments: List[_Segment], hyperlink: Optional[str]) -> str:
    # Styles stay open across segments and only the ones that change are
    # closed, so two italic delimiters never touch ("__" is underline).
    parts = []
    open_styles: List[tuple] = []
    for seg in segments:
        wanted = _markdown_styles(seg)
        keep = 0
        while keep < min(len(open_styles), len(wanted)) and open_styles[keep] == wanted[keep]:
            keep += 1
        for style in reversed(open_styles[keep:]):
            parts.append(_close_markdown(style))
        for style in wanted[keep:]:
            parts.append(_open_markdown(style))
        open_styles = wanted
        parts.append(escape_markdown_v2(seg.text))
    for style in reversed(open_styles):
        parts.append(_close_markdown(style))
    out = "".join(parts)
    if hyperlink and not any(seg.href for seg in segments):
        out = f"[{out}]({_escape_markdown_url(hyperlink)})"
    return out


def render_cell(cell: Optional[Dict[str, Any]], markup: str = "HTML") -> str:
    """Render a grid-data cell in Telegram's ``HTML`` or ``MarkdownV2`` syntax.

    Any other ``markup`` value (``"None"``) returns the plain text.
    """

    if not cell:
        return ""
    text = (cell.get("userEnteredValue") or {}).get("stringValue") or cell.get("formattedValue") or ""
    if not text:
        return ""
    if markup not in ("HTML", "MarkdownV2"):
        return text

    segments = _segments(text, cell.get("textFormatRuns") or [])
    hyperlink = cell.get("hyperlink")
    if markup == "HTML":
        return _render_html(segments, hyperlink)
    return _render_markdown_v2(segments, hyperlink)


def _execute(request, action: str):
    from google.auth.exceptions import GoogleAuthError
    from googleapiclient.errors import HttpError
    from httplib2 import HttpLib2Error

    try:
        return request.execute()
    except HttpError as exc:
        status = getattr(exc.resp, "status", "?")
        raise SheetsError(f"{action} failed (HTTP {status}): {exc}") from exc
    except GoogleAuthError as exc:
        raise SheetsError(f"{action} failed: service account rejected ({exc})") from exc
    except (HttpLib2Error, OSError) as exc:
        raise SheetsError(f"{action} failed: network error ({exc})") from exc


class GoogleSheetsSource:
    """Content source backed by one Google service account."""

    def __init__(self, credentials: SheetCredentials, service=None):
        self.credentials = credentials
        self._service = service

    @classmethod
    def from_config(cls, config) -> "GoogleSheetsSource":
        return cls(config.credentials)

    @property
    def service(self):
        if self._service is None:
            try:
                self._service = get_sheets_service(self.credentials)
            except ValueError as exc:
                # google-auth raises ValueError for an unparsable private key.
                raise SheetsError(f"Invalid service account credentials: {exc}") from exc
        return self._service

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def get_spreadsheet_info(self, spreadsheet_id: str) -> dict:
        resp = _execute(
            self.service.spreadsheets().get(spreadsheetId=spreadsheet_id),
            "Reading spreadsheet info",
        )
        return {
            "title": resp.get("properties", {}).get("title", ""),
            "sheets": [
                {
                    "title": sheet.get("properties", {}).get("title"),
                    "sheetId": sheet.get("properties", {}).get("sheetId"),
                }
                for sheet in resp.get("sheets", [])
            ],
        }

    def test_connection(self, spreadsheet_id: str) -> tuple[bool, str]:
        try:
            info = self.get_spreadsheet_info(spreadsheet_id)
        except SheetsError as exc:
            log.error(f"Google Sheets connection error: {exc}")
            return False, str(exc)
        return True, f"Connection successful: '{info['title']}' ({len(info['sheets'])} sheet(s))"

    # ------------------------------------------------------------------
    # Content selection
    # ------------------------------------------------------------------
    def available_items(
        self,
        ref: SheetRef,
        content_column: str = "A",
        status_column: str = "B",
        skip_header: bool = False,
    ) -> List[ContentItem]:
        content_idx = column_letter_to_index(content_column)
        status_idx = column_letter_to_index(status_column)
        first_idx = min(content_idx, status_idx)
        first_col, last_col = sorted((content_column.upper(), status_column.upper()), key=column_letter_to_index)

        resp = _execute(
            self.service.spreadsheets().values().get(
                spreadsheetId=ref.spreadsheet_id,
                range=ref.a1(f"{first_col}:{last_col}"),
                majorDimension="ROWS",
            ),
            f"Reading {ref.sheet_name}!{first_col}:{last_col}",
        )
        rows = resp.get("values", [])
        candidates = available_rows(rows, content_idx - first_idx, status_idx - first_idx, skip_header)
        log.debug(
            f"{len(rows)} row(s) fetched from {ref.sheet_name}, {len(candidates)} available (skip_header={skip_header})"
        )
        return [ContentItem(row, f"{content_column.upper()}{row}") for row in candidates]

    def pick_available_item(
        self,
        ref: SheetRef,
        content_column: str = "A",
        status_column: str = "B",
        skip_header: bool = False,
        rng=None,
    ) -> Optional[ContentItem]:
        """Pick one unposted row uniformly at random, or None when the sheet is exhausted."""

        items = self.available_items(ref, content_column, status_column, skip_header)
        if not items:
            return None
        chosen = (rng or random).choice(items)
        log.info(f"🎲 Selected row {chosen.row_number} ({chosen.cell_ref}) out of {len(items)} candidate(s)")
        return chosen

    def read_rich_text(self, ref: SheetRef, cell_ref: str, markup: str = "HTML") -> str:
        resp = _execute(
            self.service.spreadsheets().get(
                spreadsheetId=ref.spreadsheet_id,
                ranges=[ref.a1(cell_ref)],
                includeGridData=True,
                fields=CELL_FIELDS,
            ),
            f"Reading cell {cell_ref}",
        )
        try:
            cell = resp["sheets"][0]["data"][0]["rowData"][0]["values"][0]
        except (KeyError, IndexError):
            return ""
        return render_cell(cell, markup)

    def mark_consumed(self, ref: SheetRef, row_number: int, value: str, status_column: str = "B") -> None:
        address = f"{status_column.upper()}{row_number}"
        _execute(
            self.service.spreadsheets().values().update(
                spreadsheetId=ref.spreadsheet_id,
                range=ref.a1(address),
                valueInputOption="USER_ENTERED",
                body={"values": [[value]]},
            ),
            f"Marking {address} as consumed",
        )
        log.info(f"✅ Marked {ref.sheet_name}!{address} = {value!r}")
