import re
import unicodedata
from pathlib import Path


def clean_allow(name: str) -> str:
    """Replace all unexpected characters with underscores"""
    name = name.strip().lower()
    # replace any non-alphanumeric, dash, or underscore with underscore
    cleaned = re.sub(r"[^a-z0-9_-]+", "_", name)
    # trim leading/trailing underscores
    return cleaned.strip("_")


def sanitize_filename(name: str) -> str:
    """Sanitize a filename while preserving a safe extension when present."""

    candidate = Path(name).name
    if not candidate:
        return "file"

    if "." in candidate:
        stem, ext = candidate.rsplit(".", 1)
        sanitized_stem = clean_allow(stem)
        sanitized_ext = re.sub(r"[^a-z0-9]+", "", ext.lower())
        if sanitized_stem and sanitized_ext:
            return f"{sanitized_stem}.{sanitized_ext}"
        if sanitized_stem:
            return sanitized_stem

    sanitized = clean_allow(candidate)
    return sanitized or "file"


def file_extension(name: str) -> str:
    """Return the lowercased extension of a filename without the dot ("" if none)."""
    candidate = Path(name).name
    if "." not in candidate.strip("."):
        return ""
    return candidate.rsplit(".", 1)[1].strip().lower()


def slugify(text: str) -> str:
    """Convert text to a URL-safe slug.

    Accents are folded to their base letter, punctuation is dropped and runs of
    whitespace, underscores or hyphens collapse to a single hyphen.

    >>> slugify("Downtown Tour — 2024!")
    'downtown-tour-2024'
    """
    decomposed = unicodedata.normalize("NFD", str(text).lower())
    without_accents = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    words_only = re.sub(r"[^\w\s-]", "", without_accents, flags=re.ASCII)
    hyphenated = re.sub(r"[\s_-]+", "-", words_only)
    return hyphenated.strip("-")
