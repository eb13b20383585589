"""Exception types shared across the moderation pipeline."""

from __future__ import annotations


# Prefixes that chat platforms put in front of the human readable part of an error
TRANSPORT_PREFIXES = (
    "Bad Request: ",
    "Forbidden: ",
    "Conflict: ",
)


def clean_platform_error(text: str) -> str:
    """Strip transport specific prefixes from a platform error string.

    >>> clean_platform_error("Bad Request: message to delete not found")
    'message to delete not found'
    """
    cleaned = text.strip()
    stripped = True
    while stripped:
        stripped = False
        for prefix in TRANSPORT_PREFIXES:
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix):].lstrip()
                stripped = True
    return cleaned


class ModguardError(Exception):
    """Base class for errors raised by modguard."""


class ConfigError(ModguardError):
    """A chat configuration could not be read or written."""


class PlatformError(ModguardError):
    """A chat platform call failed.

    The message is the operator facing text, already cleaned of transport
    prefixes, so it can be shown back to moderators verbatim.
    """

    def __init__(self, text: str) -> None:
        self.text = clean_platform_error(text)
        super().__init__(self.text)


class PermissionDeniedError(PlatformError):
    """The acting identity lacks the rights needed for an action."""


class ClassificationError(ModguardError):
    """A classification job ended without a usable verdict.

    Never leaves the classification engine, which fails open instead.
    """
