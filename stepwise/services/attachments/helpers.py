import os
import re
from typing import Dict, Iterable, NamedTuple, Optional, Tuple

from stepwise.core.config import settings
from stepwise.models.enums import FileType
from stepwise.utils.validation import ValidationResult, validate_with

GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# extension -> (file type, MIME types that agree with it)
ALLOWED_EXTENSIONS: Dict[str, Tuple[FileType, Tuple[str, ...]]] = {
    ".jpg": (FileType.IMAGE, ("image/jpeg", "image/jpg")),
    ".jpeg": (FileType.IMAGE, ("image/jpeg", "image/jpg")),
    ".png": (FileType.IMAGE, ("image/png",)),
    ".gif": (FileType.IMAGE, ("image/gif",)),
    ".webp": (FileType.IMAGE, ("image/webp",)),
    ".pdf": (FileType.DOCUMENT, ("application/pdf",)),
    ".doc": (FileType.DOCUMENT, ("application/msword",)),
    ".docx": (
        FileType.DOCUMENT,
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
    ),
    ".txt": (FileType.TEXT, ("text/plain",)),
    ".md": (FileType.TEXT, ("text/markdown", "text/x-markdown", "text/plain")),
    ".json": (FileType.TEXT, ("application/json", "text/plain")),
    ".csv": (FileType.SPREADSHEET, ("text/csv", "application/vnd.ms-excel", "text/plain")),
    ".xls": (FileType.SPREADSHEET, ("application/vnd.ms-excel",)),
    ".xlsx": (
        FileType.SPREADSHEET,
        ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",),
    ),
    ".ppt": (FileType.PRESENTATION, ("application/vnd.ms-powerpoint",)),
    ".pptx": (
        FileType.PRESENTATION,
        ("application/vnd.openxmlformats-officedocument.presentationml.presentation",),
    ),
    ".mp4": (FileType.VIDEO, ("video/mp4",)),
    ".mov": (FileType.VIDEO, ("video/quicktime",)),
    ".webm": (FileType.VIDEO, ("video/webm",)),
    ".mp3": (FileType.AUDIO, ("audio/mpeg", "audio/mp3")),
    ".wav": (FileType.AUDIO, ("audio/wav", "audio/x-wav", "audio/wave")),
    ".zip": (FileType.OTHER, ("application/zip", "application/x-zip-compressed")),
}


class UploadCandidate(NamedTuple):
    filename: str
    content_type: Optional[str]
    size: int


def sanitize_filename(filename: str, max_length: Optional[int] = None) -> str:
    """Reduce a client-supplied filename to a safe basename.

    Directory components are dropped (both separators), ``..`` sequences are
    removed, every character outside ``[A-Za-z0-9._-]`` becomes ``_`` and the
    stem is truncated so the whole name fits ``max_length``.
    """
    max_length = max_length or settings.MAX_FILENAME_LENGTH
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    name = name.replace("..", "")
    name = _UNSAFE_CHARS.sub("_", name).lstrip(".")
    if not name:
        name = "file"

    stem, ext = os.path.splitext(name)
    if len(name) > max_length:
        ext = ext[: max_length // 2]
        stem = stem[: max_length - len(ext)] or "file"
        name = f"{stem}{ext}"
    return name


def file_extension(filename: str) -> str:
    return os.path.splitext(sanitize_filename(filename))[1].lower()


def classify_file(filename: str) -> FileType:
    entry = ALLOWED_EXTENSIONS.get(file_extension(filename))
    return entry[0] if entry else FileType.OTHER


def max_size_for(file_type: FileType) -> int:
    if file_type == FileType.IMAGE:
        return settings.MAX_IMAGE_SIZE
    return settings.MAX_DOCUMENT_SIZE


def _check_extension(candidate: UploadCandidate) -> Iterable[str]:
    ext = file_extension(candidate.filename)
    if ext not in ALLOWED_EXTENSIONS:
        yield f"File extension '{ext or '(none)'}' is not allowed"


def _check_mime(candidate: UploadCandidate) -> Iterable[str]:
    entry = ALLOWED_EXTENSIONS.get(file_extension(candidate.filename))
    mime = (candidate.content_type or "").split(";")[0].strip().lower()
    if entry and mime not in GENERIC_MIME_TYPES and mime not in entry[1]:
        yield f"MIME type '{mime}' does not match the file extension"


def _check_size(candidate: UploadCandidate) -> Iterable[str]:
    if candidate.size <= 0:
        yield "File is empty"
        return
    limit = max_size_for(classify_file(candidate.filename))
    if candidate.size > limit:
        yield f"File exceeds the maximum size of {limit // (1024 * 1024)}MB"


def validate_upload(filename: str, content_type: Optional[str], size: int) -> ValidationResult:
    return validate_with(
        UploadCandidate(filename, content_type, size),
        _check_extension,
        _check_mime,
        _check_size,
    )
