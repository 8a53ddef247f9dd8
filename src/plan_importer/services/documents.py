"""Prepare routed file content for the extraction boundary."""

import base64
import csv
import io
import zipfile
from dataclasses import dataclass
from enum import StrEnum

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from plan_importer.errors import ValidationError
from plan_importer.services.mime_router import MimeCategory, MimeRouter

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_FILE_EXTENSIONS = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
}


class PayloadKind(StrEnum):
    """How the payload is presented to the extraction model."""

    IMAGE = "image"
    FILE = "file"
    TEXT = "text"


@dataclass(frozen=True)
class ExtractionPayload:
    """Content ready to be sent to an extraction client."""

    kind: PayloadKind
    data: str
    mime_type: str
    filename: str | None = None


async def image_payload(content: bytes, mime_type: str) -> ExtractionPayload:
    """Wrap image bytes in a data URL."""
    return ExtractionPayload(
        kind=PayloadKind.IMAGE,
        data=_to_data_url(content, _detect_image_mime_type(content, mime_type)),
        mime_type=mime_type,
    )


async def file_payload(content: bytes, mime_type: str) -> ExtractionPayload:
    """Wrap a binary document (PDF, Word) in a data URL with a filename."""
    cleaned = _clean_mime_type(mime_type)
    extension = _FILE_EXTENSIONS.get(cleaned, "bin")
    return ExtractionPayload(
        kind=PayloadKind.FILE,
        data=_to_data_url(content, cleaned or "application/octet-stream"),
        mime_type=cleaned,
        filename=f"document.{extension}",
    )


async def spreadsheet_payload(content: bytes, mime_type: str) -> ExtractionPayload:
    """Render a spreadsheet to CSV-like text."""
    if content.startswith(_ZIP_MAGIC):
        text = _render_workbook(content)
    elif content.startswith(_OLE_MAGIC):
        # Legacy binary workbooks are passed through as files.
        return await file_payload(content, "application/vnd.ms-excel")
    else:
        text = content.decode("utf-8-sig", errors="replace")
    if not text.strip():
        raise ValidationError("Spreadsheet contains no data")
    return ExtractionPayload(kind=PayloadKind.TEXT, data=text, mime_type=mime_type)


def build_document_router() -> MimeRouter[ExtractionPayload]:
    """Create the router used by the import pipeline."""
    return MimeRouter(
        handlers={
            MimeCategory.IMAGE: image_payload,
            MimeCategory.PDF: file_payload,
            MimeCategory.SPREADSHEET: spreadsheet_payload,
            MimeCategory.DOCUMENT: file_payload,
        }
    )


def _render_workbook(content: bytes) -> str:
    """Render every sheet of an OOXML workbook as CSV text."""
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValidationError(f"Could not read spreadsheet: {exc}") from exc
    sections: list[str] = []
    try:
        for sheet in workbook.worksheets:
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            for row in sheet.iter_rows(values_only=True):
                if not any(cell is not None and cell != "" for cell in row):
                    continue
                writer.writerow(["" if cell is None else cell for cell in row])
            rendered = buffer.getvalue().strip()
            if rendered:
                sections.append(f"# Sheet: {sheet.title}\n{rendered}")
    finally:
        workbook.close()
    return "\n\n".join(sections)


def _clean_mime_type(mime_type: str) -> str:
    return mime_type.split(";", 1)[0].strip().lower()


def _to_data_url(content: bytes, mime_type: str) -> str:
    """Convert bytes to a base64 data URL."""
    encoded = base64.b64encode(content).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _detect_image_mime_type(content: bytes, declared: str) -> str:
    """Infer a basic image MIME type from file signatures."""
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    cleaned = _clean_mime_type(declared)
    return cleaned if cleaned.startswith("image/") else "image/jpeg"
