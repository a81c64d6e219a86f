"""File name, type and size validation for uploads."""

import mimetypes
import re

from assethub.core.exceptions import UploadValidationError
from assethub.schemas.upload import BulkUploadFile, BulkUploadValidation
from assethub.schemas.usage import UsageLimits

MAX_FILE_NAME_LENGTH = 255

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_RESERVED_NAMES = re.compile(r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(\.|$)", re.IGNORECASE)

# Accepted MIME types per extension; the first entry is the canonical one.
SUPPORTED_FILE_TYPES: dict[str, dict[str, tuple[str, ...]]] = {
    "image": {
        ".jpg": ("image/jpeg", "image/jpg"),
        ".jpeg": ("image/jpeg", "image/jpg"),
        ".png": ("image/png",),
        ".gif": ("image/gif",),
        ".webp": ("image/webp",),
        ".avif": ("image/avif",),
        ".svg": ("image/svg+xml",),
        ".bmp": ("image/bmp",),
        ".tiff": ("image/tiff",),
        ".tif": ("image/tiff",),
    },
    "video": {
        ".mp4": ("video/mp4",),
        ".mov": ("video/quicktime",),
        ".avi": ("video/x-msvideo", "video/avi"),
        ".webm": ("video/webm",),
        ".ogv": ("video/ogg",),
    },
    "document": {
        ".pdf": ("application/pdf",),
        ".doc": ("application/msword",),
        ".docx": ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
        ".xls": ("application/vnd.ms-excel",),
        ".xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",),
        ".ppt": ("application/vnd.ms-powerpoint",),
        ".pptx": ("application/vnd.openxmlformats-officedocument.presentationml.presentation",),
        ".txt": ("text/plain",),
        ".csv": ("text/csv",),
    },
    "design": {
        ".ai": ("application/postscript",),
        ".eps": ("application/postscript", "image/x-eps"),
        ".psd": ("image/vnd.adobe.photoshop",),
        ".sketch": ("application/x-sketch",),
        ".fig": ("application/vnd.figma",),
    },
    "archive": {
        ".zip": ("application/zip", "application/x-zip-compressed"),
        ".rar": ("application/x-rar-compressed", "application/vnd.rar"),
        ".7z": ("application/x-7z-compressed",),
        ".gz": ("application/gzip",),
    },
    "font": {
        ".woff": ("font/woff", "application/font-woff"),
        ".woff2": ("font/woff2", "application/font-woff2"),
        ".ttf": ("font/ttf", "application/x-font-ttf"),
        ".otf": ("font/otf", "application/x-font-otf"),
    },
}

_EXTENSION_TYPES = {
    ext: types
    for extensions in SUPPORTED_FILE_TYPES.values()
    for ext, types in extensions.items()
}
_MIME_CATEGORIES = {
    mime: category
    for category, extensions in SUPPORTED_FILE_TYPES.items()
    for types in extensions.values()
    for mime in types
}

# Built-in table only, so results do not depend on the host's mime.types.
_mime_db = mimetypes.MimeTypes()


def get_extension(file_name: str) -> str:
    """Return the lowercased extension including the dot, or ``""``."""
    if "." not in file_name:
        return ""
    return "." + file_name.rsplit(".", 1)[1].lower()


def get_file_category(mime_type: str) -> str:
    """Map a MIME type to its asset category (``other`` if unsupported)."""
    return _MIME_CATEGORIES.get(mime_type.lower(), "other")


def expected_mime_types(file_name: str) -> tuple[str, ...]:
    """MIME types consistent with the file name's extension."""
    extension = get_extension(file_name)
    if extension in _EXTENSION_TYPES:
        return _EXTENSION_TYPES[extension]
    guessed, _ = _mime_db.guess_type(f"file{extension}", strict=False)
    return (guessed,) if guessed else ()


def validate_file_name(file_name: str) -> None:
    """Reject names that are unsafe as object keys or on common filesystems."""
    if not file_name or not file_name.strip():
        raise UploadValidationError("File name is required")

    if _INVALID_CHARS.search(file_name):
        raise UploadValidationError("File name contains invalid characters")

    if len(file_name) > MAX_FILE_NAME_LENGTH:
        raise UploadValidationError(
            f"File name is too long (maximum {MAX_FILE_NAME_LENGTH} characters)"
        )

    if _RESERVED_NAMES.match(file_name):
        raise UploadValidationError("File name uses a reserved system name")

    stem, dot, extension = file_name.rpartition(".")
    if not dot or not stem or not extension:
        raise UploadValidationError("File must have a valid extension")


def is_type_allowed(mime_type: str, allowed_types: list[str]) -> bool:
    """Match against exact MIME types and ``type/*`` wildcards."""
    for allowed in allowed_types:
        allowed = allowed.strip().lower()
        if "*" in allowed:
            if mime_type.startswith(allowed.split("/", 1)[0] + "/"):
                return True
        elif allowed == mime_type:
            return True
    return False


def validate_file_type(
    file_name: str,
    mime_type: str,
    allowed_types: list[str] | None = None,
) -> str:
    """Check the declared MIME type against the extension.

    With ``allowed_types`` the type must match one of them; without, it
    must be one of ``SUPPORTED_FILE_TYPES``.

    Returns:
        The asset category for the MIME type.
    """
    mime_type = (mime_type or "").strip().lower()
    if not mime_type:
        raise UploadValidationError("Content type is required")

    expected = expected_mime_types(file_name)
    if expected and mime_type not in expected:
        raise UploadValidationError(
            "File extension does not match content type. "
            f"Expected: {expected[0]}, Got: {mime_type}"
        )

    category = get_file_category(mime_type)
    if allowed_types:
        if not is_type_allowed(mime_type, allowed_types):
            raise UploadValidationError(
                f"File type not allowed. Allowed types: {', '.join(allowed_types)}"
            )
    elif category == "other":
        raise UploadValidationError(f"Unsupported file type: {mime_type}")

    return category


def validate_file_size(file_size: int, max_size_mb: int) -> None:
    """Reject non-positive sizes and sizes above ``max_size_mb``."""
    if file_size <= 0:
        raise UploadValidationError("File size must be greater than zero")

    max_size_bytes = max_size_mb * 1024 * 1024
    if file_size > max_size_bytes:
        raise UploadValidationError(
            f"File size exceeds limit. Maximum: {max_size_mb}MB, "
            f"Got: {file_size / 1024 / 1024:.2f}MB"
        )


def validate_bulk_upload(
    files: list[BulkUploadFile],
    limits: UsageLimits,
) -> BulkUploadValidation:
    """Validate every file of a multi-file upload against tenant limits.

    Errors are collected rather than raised, prefixed with the file name.
    """
    errors = []
    valid_files = 0
    total_size = 0

    if len(files) > limits.max_files_per_upload:
        errors.append(
            f"Too many files. Maximum: {limits.max_files_per_upload}, Got: {len(files)}"
        )

    for file in files:
        file_valid = True
        checks = (
            lambda: validate_file_name(file.name),
            lambda: validate_file_type(file.name, file.mime_type, limits.allowed_file_types),
            lambda: validate_file_size(file.size, limits.max_file_size_mb),
        )
        for check in checks:
            try:
                check()
            except UploadValidationError as e:
                errors.append(f"{file.name}: {e.message}")
                file_valid = False

        if file_valid:
            valid_files += 1
            total_size += file.size

    return BulkUploadValidation(
        is_valid=not errors,
        errors=errors,
        valid_files=valid_files,
        total_size=total_size,
    )


def sanitize_file_name(file_name: str) -> str:
    """Replace invalid characters and cap the length, keeping the extension."""
    sanitized = _INVALID_CHARS.sub("_", file_name)

    if len(sanitized) > MAX_FILE_NAME_LENGTH:
        stem, dot, extension = sanitized.rpartition(".")
        if not dot:
            return sanitized[:MAX_FILE_NAME_LENGTH]
        max_stem_length = MAX_FILE_NAME_LENGTH - len(extension) - 1
        sanitized = f"{stem[:max_stem_length]}.{extension}"

    return sanitized


def format_file_size(size_bytes: int) -> str:
    """Human readable size, e.g. ``12.0 MB``."""
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(size_bytes)
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    if unit_index == 0:
        return f"{int(size)} {units[0]}"
    return f"{size:.1f} {units[unit_index]}"
