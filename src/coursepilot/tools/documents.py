"""
Document-content tool and its collaborators.

``read_file_content`` answers with exactly one of three shapes:

* ``{"inlineData": <base64>, "mimeType": ...}`` for formats the model consumes directly
  (PDF and images);
* ``{"text": ...}`` for formats that need local extraction first;
* ``{"error": ...}`` when neither is possible (size limit, unsupported format, no source).

Fetching bytes and extracting text are delegated to :class:`DocumentFetcher` and
:class:`TextExtractor` implementations carried by the session.
"""

import base64
import logging
import mimetypes
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Mapping,
    Protocol,
    runtime_checkable,
)

import httpx

from coursepilot.config import settings
from coursepilot.tools import register_tool

if TYPE_CHECKING:
    from coursepilot.core.session import Session

logger = logging.getLogger(__name__)

INLINE_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "image/png",
        "image/jpeg",
        "image/gif",
        "image/webp",
    }
)


class DocumentFetchError(RuntimeError):
    """Raised when a file's bytes cannot be retrieved."""


@runtime_checkable
class DocumentFetcher(Protocol):
    """Retrieves the raw bytes behind a file record."""

    async def fetch(self, record: Mapping[str, Any]) -> bytes: ...


@runtime_checkable
class TextExtractor(Protocol):
    """Turns document bytes into plain text for formats the model cannot read inline."""

    def supports(self, mime_type: str) -> bool: ...

    def extract(self, data: bytes, mime_type: str) -> str: ...


class HttpDocumentFetcher:
    """Downloads the file record's ``url`` with httpx."""

    def __init__(self, timeout: float = 30.0):
        self._timeout = timeout

    async def fetch(self, record: Mapping[str, Any]) -> bytes:
        url = record.get("url")
        if not url:
            raise DocumentFetchError("file has no storage URL")
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as exc:
            raise DocumentFetchError(str(exc)) from exc


class PlainTextExtractor:
    """Decodes text-like formats; anything else is reported as unsupported."""

    def supports(self, mime_type: str) -> bool:
        return mime_type.startswith("text/") or mime_type in {
            "application/json",
            "application/xml",
        }

    def extract(self, data: bytes, mime_type: str) -> str:
        return data.decode("utf-8", errors="replace")


def _mime_type(record: Mapping[str, Any]) -> str:
    mime = record.get("mimeType") or record.get("type")
    if not mime:
        mime, _ = mimetypes.guess_type(str(record.get("name") or ""))
    return (mime or "application/octet-stream").lower()


@register_tool("read_file_content", student_safe=True)
async def read_file_content(ctx: "Session", file_id: str) -> Dict[str, Any]:
    """Read one course file: inline PDF/image data, extracted text, or an error."""
    record = ctx.snapshot.get("files", file_id)
    if record is None:
        return {"error": f"No file with id '{file_id}' in this course."}

    name = record.get("name") or file_id
    mime = _mime_type(record)
    max_bytes = settings.DOCUMENT_MAX_BYTES
    size = record.get("size")
    if isinstance(size, (int, float)) and size > max_bytes:
        return {"error": f"'{name}' is {int(size)} bytes, over the {max_bytes}-byte limit."}

    inline = mime in INLINE_MIME_TYPES
    if not inline and not ctx.text_extractor.supports(mime):
        return {"error": f"'{name}' has unsupported format {mime}."}

    # Text already stored alongside the record needs no fetch.
    if not inline and isinstance(record.get("content"), str):
        return {"fileId": record.get("id"), "name": name, "text": record["content"]}

    try:
        data = await ctx.document_fetcher.fetch(record)
    except DocumentFetchError as exc:
        logger.warning("Could not fetch file %s: %s", file_id, exc)
        return {"error": f"Could not read '{name}': {exc}."}

    if len(data) > max_bytes:
        return {"error": f"'{name}' is {len(data)} bytes, over the {max_bytes}-byte limit."}

    if inline:
        return {
            "fileId": record.get("id"),
            "name": name,
            "mimeType": mime,
            "inlineData": base64.b64encode(data).decode("ascii"),
        }
    return {"fileId": record.get("id"), "name": name, "text": ctx.text_extractor.extract(data, mime)}
