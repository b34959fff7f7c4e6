"""Language tag to file extension registry."""

from __future__ import annotations

EXTENSIONS: dict[str, str] = {
    "yaml": "yaml",
    "json": "json",
    "markdown": "md",
    "javascript": "js",
    "typescript": "ts",
    "python": "py",
    "html": "html",
    "css": "css",
    "shell": "sh",
    "xml": "xml",
    "plaintext": "txt",
}


def extension_for(language: str) -> str:
    """Return the file extension for *language* (``txt`` if unknown)."""
    return EXTENSIONS.get(language, "txt")


def language_for(extension: str) -> str:
    """Reverse lookup of :func:`extension_for` (``plaintext`` if unknown)."""
    for language, ext in EXTENSIONS.items():
        if ext == extension:
            return language
    return "plaintext"


def remote_filename(document_id: str, language: str) -> str:
    """Return the remote filename a document with *language* is stored under."""
    return f"{document_id}.{extension_for(language)}"
