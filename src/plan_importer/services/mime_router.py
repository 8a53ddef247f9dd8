"""Route file content to a category handler based on its declared MIME type."""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

from plan_importer.errors import UnsupportedMimeTypeError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class MimeCategory(StrEnum):
    """Processing categories for import files."""

    IMAGE = "image"
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"
    DOCUMENT = "document"


_PREFIX_RULES: tuple[tuple[str, MimeCategory], ...] = (("image/", MimeCategory.IMAGE),)

_EXACT_RULES: dict[str, MimeCategory] = {
    "application/pdf": MimeCategory.PDF,
    "text/csv": MimeCategory.SPREADSHEET,
    "application/vnd.ms-excel": MimeCategory.SPREADSHEET,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (
        MimeCategory.SPREADSHEET
    ),
    "application/msword": MimeCategory.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (
        MimeCategory.DOCUMENT
    ),
}

Handler = Callable[[bytes, str], Awaitable[T]]


def classify_mime_type(mime_type: str) -> MimeCategory | None:
    """Return the category for a declared MIME type, if any rule matches."""
    cleaned = mime_type.split(";", 1)[0].strip().lower()
    if not cleaned:
        return None
    for prefix, category in _PREFIX_RULES:
        if cleaned.startswith(prefix):
            return category
    return _EXACT_RULES.get(cleaned)


@dataclass
class MimeRouter(Generic[T]):
    """Dispatch content to exactly one handler per call."""

    handlers: Mapping[MimeCategory, Handler[T]] = field(default_factory=dict)
    fallback: Handler[T] | None = None

    async def route(self, content: bytes, declared_mime_type: str) -> T:
        """Invoke the handler for the declared type, or the fallback."""
        category = classify_mime_type(declared_mime_type)
        handler = self.handlers.get(category) if category else None
        if handler is None:
            if self.fallback is None:
                raise UnsupportedMimeTypeError(declared_mime_type)
            _logger.info("No MIME rule for %s, using fallback", declared_mime_type)
            return await self.fallback(content, declared_mime_type)
        return await handler(content, declared_mime_type)
