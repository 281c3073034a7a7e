"""Content type detection.

Resolves a MIME type for a payload from its logical name first and, when the
extension is missing or unknown, from the payload bytes:

1. Extension lookup (isolated mimetypes table + registered custom types).
2. Binary signature ("magic bytes") table, checked in order; first match wins.
3. Text heuristic, with sub-classification into HTML/XML/JSON/CSS/script.
4. application/octet-stream.
"""

from __future__ import annotations

import mimetypes
import re
import zipfile
from collections.abc import Mapping
from dataclasses import dataclass
from io import BytesIO

from stowage.paths import parse_path

OCTET_STREAM = "application/octet-stream"

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
EPUB = "application/epub+zip"
ZIP = "application/zip"

TEXT_SAMPLE_SIZE = 1000
TEXT_THRESHOLD = 0.9
_CLASSIFY_SAMPLE_SIZE = 100
_ZIP_SNIFF_WINDOW = 512

DOCUMENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        DOCX,
        "application/vnd.ms-excel",
        XLSX,
        "application/vnd.ms-powerpoint",
        PPTX,
        EPUB,
        "application/rtf",
    }
)

# Not every interpreter ships these in its default table.
_EXTRA_TYPES: dict[str, str] = {
    ".docx": DOCX,
    ".xlsx": XLSX,
    ".pptx": PPTX,
    ".epub": EPUB,
    ".rtf": "application/rtf",
    ".json": "application/json",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".webp": "image/webp",
    ".webm": "video/webm",
    ".mp4": "video/mp4",
    ".m4a": "audio/mp4",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".svg": "image/svg+xml",
}

_PREFERRED_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "text/plain": ".txt",
    "text/html": ".html",
    "application/javascript": ".js",
    "text/javascript": ".js",
    "audio/mpeg": ".mp3",
    "video/mp4": ".mp4",
    "application/xml": ".xml",
}


@dataclass(frozen=True)
class MagicSignature:
    """A binary signature: every (offset, bytes) part must match."""

    content_type: str
    parts: tuple[tuple[int, bytes], ...]

    def matches(self, data: bytes) -> bool:
        return all(
            data[offset : offset + len(expected)] == expected for offset, expected in self.parts
        )


# Order is significant: first match wins. RIFF containers share a prefix and
# are told apart by their second part; ZIP is refined afterwards.
SIGNATURES: tuple[MagicSignature, ...] = (
    MagicSignature("application/pdf", ((0, b"%PDF"),)),
    MagicSignature("image/png", ((0, b"\x89PNG\r\n\x1a\n"),)),
    MagicSignature("image/jpeg", ((0, b"\xff\xd8\xff"),)),
    MagicSignature("image/gif", ((0, b"GIF87a"),)),
    MagicSignature("image/gif", ((0, b"GIF89a"),)),
    MagicSignature("image/webp", ((0, b"RIFF"), (8, b"WEBP"))),
    MagicSignature(ZIP, ((0, b"PK\x03\x04"),)),
    MagicSignature("video/mp4", ((4, b"ftyp"),)),
    MagicSignature("video/webm", ((0, b"\x1a\x45\xdf\xa3"),)),
    MagicSignature("audio/wav", ((0, b"RIFF"), (8, b"WAVE"))),
    MagicSignature("audio/ogg", ((0, b"OggS"),)),
    MagicSignature("audio/mpeg", ((0, b"ID3"),)),
    MagicSignature("application/gzip", ((0, b"\x1f\x8b"),)),
)

# Checked in order within the leading window of a ZIP payload.
_ZIP_MARKERS: tuple[tuple[bytes, str], ...] = (
    (b"mimetypeapplication/epub+zip", EPUB),
    (b"META-INF/container.xml", EPUB),
    (b"word/", DOCX),
    (b"xl/", XLSX),
    (b"ppt/", PPTX),
)

_BYTE_ORDER_MARKS: tuple[tuple[bytes, str], ...] = (
    (b"\x00\x00\xfe\xff", "utf-32-be"),
    (b"\xff\xfe\x00\x00", "utf-32-le"),
    (b"\xef\xbb\xbf", "utf-8"),
    (b"\xfe\xff", "utf-16-be"),
    (b"\xff\xfe", "utf-16-le"),
)

_TEXT_CLASSIFIERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"<(!DOCTYPE|html|head|body)", re.IGNORECASE), "text/html"),
    (re.compile(r"<\?xml", re.IGNORECASE), "application/xml"),
    (re.compile(r"^\s*[{\[]"), "application/json"),
    (re.compile(r"@import|@media|@font-face|body\s*\{", re.IGNORECASE), "text/css"),
    (
        re.compile(
            r"function\s+\w+\s*\(|var\s+\w+\s*=|const\s+\w+\s*=|let\s+\w+\s*=|import\s+",
            re.IGNORECASE,
        ),
        "application/javascript",
    ),
)


def _split_bom(data: bytes) -> tuple[str | None, bytes]:
    for bom, encoding in _BYTE_ORDER_MARKS:
        if data.startswith(bom):
            return encoding, data[len(bom) :]
    return None, data


def is_text_payload(data: bytes) -> bool:
    """Heuristically decide whether a payload is text.

    A byte-order mark is an unconditional text signal. Otherwise the first
    TEXT_SAMPLE_SIZE bytes are sampled: printable ASCII plus tab/LF/CR count
    as text, other control bytes count as binary, and bytes >= 0x80 are
    neutral so UTF-8 text is not penalised. More than 90% text wins.
    """
    encoding, _ = _split_bom(data)
    if encoding is not None:
        return True

    text_count = 0
    binary_count = 0
    for byte in data[:TEXT_SAMPLE_SIZE]:
        if 32 <= byte <= 126 or byte in (9, 10, 13):
            text_count += 1
        elif byte < 32 or byte == 127:
            binary_count += 1

    return text_count > 0 and text_count / (text_count + binary_count) > TEXT_THRESHOLD


def _classify_text(data: bytes) -> str:
    encoding, body = _split_bom(data)
    if encoding is None or encoding == "utf-8":
        sample = body[:_CLASSIFY_SAMPLE_SIZE].decode("utf-8", errors="replace")
    else:
        sample = body[: _CLASSIFY_SAMPLE_SIZE * 4].decode(encoding, errors="replace")
        sample = sample[:_CLASSIFY_SAMPLE_SIZE]

    for pattern, content_type in _TEXT_CLASSIFIERS:
        if pattern.search(sample):
            return content_type
    return "text/plain"


def _refine_zip(data: bytes) -> str:
    """Tell OOXML documents and EPUB apart from plain ZIP archives."""
    window = data[:_ZIP_SNIFF_WINDOW]
    for marker, content_type in _ZIP_MARKERS:
        if marker in window:
            return content_type

    try:
        with zipfile.ZipFile(BytesIO(data), "r") as archive:
            names = set(archive.namelist())
    except (zipfile.BadZipFile, EOFError, OSError, ValueError):
        return ZIP

    if "META-INF/container.xml" in names:
        return EPUB
    if "word/document.xml" in names:
        return DOCX
    if "xl/workbook.xml" in names:
        return XLSX
    if "ppt/presentation.xml" in names:
        return PPTX
    return ZIP


def sniff_content_type(data: bytes) -> str:
    """Detect a content type from payload bytes alone."""
    for signature in SIGNATURES:
        if signature.matches(data):
            if signature.content_type == ZIP:
                return _refine_zip(data)
            return signature.content_type

    if is_text_payload(data):
        return _classify_text(data)

    return OCTET_STREAM


class ContentTypeDetector:
    """Content type resolution with an isolated, extendable extension table.

    Args:
        custom_types: Extra extension -> MIME type mappings (".ext" or "ext").
            These take precedence over the built-in table.
    """

    def __init__(self, custom_types: Mapping[str, str] | None = None) -> None:
        self._mime = mimetypes.MimeTypes()
        for ext, content_type in _EXTRA_TYPES.items():
            self._mime.add_type(content_type, ext)
        for ext, content_type in (custom_types or {}).items():
            normalized = ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            self._mime.add_type(content_type, normalized)

    def lookup_extension(self, ext: str) -> str | None:
        """Return the MIME type registered for an extension, if any."""
        if not ext:
            return None
        ext = ext.lower()
        strict_map, common_map = self._mime.types_map
        return strict_map.get(ext) or common_map.get(ext)

    def detect_content_type(self, path: str | None, payload: bytes | str | None = None) -> str:
        """Resolve a MIME type from a logical path and optional payload."""
        if path:
            by_extension = self.lookup_extension(parse_path(path).ext)
            if by_extension:
                return by_extension

        if payload is not None:
            data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
            if data:
                return sniff_content_type(data)

        return OCTET_STREAM

    def get_extension_from_content_type(self, content_type: str) -> str:
        """Return a file extension (with dot) for a MIME type, or ""."""
        preferred = _PREFERRED_EXTENSIONS.get(content_type)
        if preferred:
            return preferred
        return self._mime.guess_extension(content_type) or ""


def is_content_type_category(content_type: str, category: str) -> bool:
    """Check whether a MIME type belongs to a top-level category."""
    return content_type.startswith(f"{category}/")


def is_image(content_type: str) -> bool:
    return is_content_type_category(content_type, "image")


def is_text(content_type: str) -> bool:
    return is_content_type_category(content_type, "text")


def is_audio(content_type: str) -> bool:
    return is_content_type_category(content_type, "audio")


def is_video(content_type: str) -> bool:
    return is_content_type_category(content_type, "video")


def is_document(content_type: str) -> bool:
    """Check a MIME type against the fixed document allow-list."""
    return content_type in DOCUMENT_TYPES


_default_detector = ContentTypeDetector()


def detect_content_type(path: str | None, payload: bytes | str | None = None) -> str:
    """Resolve a MIME type using the default detector."""
    return _default_detector.detect_content_type(path, payload)


def get_extension_from_content_type(content_type: str) -> str:
    """Return a file extension for a MIME type using the default detector."""
    return _default_detector.get_extension_from_content_type(content_type)
