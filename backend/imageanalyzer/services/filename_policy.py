"""
ImageAnalyzer Backend: Filename Policy
=======================================

What:  The allow-lists and denylists shared by validation and naming.
How:   Plain module-level constants plus two helpers: extracting the
       extension of an untrusted filename and mapping a MIME type to a
       safe extension.
Who:   ValidationGate, SecureNameGenerator, the config route.
"""

import os
import re
from typing import Optional

# Allowed MIME types mapped to the extension used when synthesizing a name
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

DEFAULT_EXTENSION = ".jpg"

# Substring match anywhere in the lowercased filename (double-extension smuggling)
DANGEROUS_EXTENSIONS = (".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".js", ".vbs")

MAX_FILENAME_BYTES = 255

# A server-side script extension as any dot-delimited segment: shell.php, shell.php.jpg
SCRIPT_SEGMENT_PATTERN = re.compile(r"\.(php|asp|jsp|cgi|pl)(\.|$)", re.IGNORECASE)

# Reserved device names, matched exactly against the stem before the first dot
RESERVED_NAME_PATTERN = re.compile(r"^(con|prn|aux|nul|com[1-9]|lpt[1-9])$", re.IGNORECASE)

FORBIDDEN_CHARACTERS_PATTERN = re.compile(r'[<>:"|?*]')

# Alphabet every generated storage name must stay within
SAFE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lowercases and trims a declared MIME type, dropping parameters."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def extract_extension(filename: Optional[str]) -> str:
    """
    Lowercased extension of an untrusted filename, "" when there is none.

    Leading-dot names such as ".gitkeep" have no extension.
    """
    if not filename:
        return ""
    return os.path.splitext(filename)[1].lower()


def mime_to_extension(mime_type: Optional[str], default: str = DEFAULT_EXTENSION) -> str:
    return ALLOWED_MIME_TYPES.get(normalize_mime_type(mime_type), default)


def is_allowed_mime_type(mime_type: Optional[str]) -> bool:
    return normalize_mime_type(mime_type) in ALLOWED_MIME_TYPES


def is_allowed_extension(extension: str) -> bool:
    return extension.lower() in ALLOWED_EXTENSIONS


def is_safe_storage_name(name: str) -> bool:
    return bool(SAFE_NAME_PATTERN.fullmatch(name))
