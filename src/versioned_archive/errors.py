"""Error types for versioned envelopes.

Every runtime failure is raised as a typed exception carrying the exact
values involved. All of them derive from ValueError so callers that only
care about "bad bytes" can catch that.
"""

from typing import Optional, Sequence


class VersionedArchiveError(ValueError):
    """Base class for all envelope errors."""


class AccessError(VersionedArchiveError):
    """Raised when a tagged buffer cannot be read as the expected container."""


class HeaderError(AccessError):
    """Raised when the envelope header itself cannot be decoded."""


class HeaderTooShort(HeaderError):
    """Buffer is shorter than the fixed header."""

    def __init__(self, length: int, required: int = 8):
        self.length = length
        self.required = required
        super().__init__(f"Header requires {required} bytes, got {length}")


class HeaderMalformed(HeaderError):
    """Engine rejected the header region."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed header: {reason}")


class TypeMismatch(AccessError):
    """Header type_id does not belong to the expected container."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected type_id {expected}, got {actual}")


class UnsupportedVersion(AccessError):
    """Header version is outside the declared version set."""

    def __init__(self, version: int):
        self.version = version
        super().__init__(f"Unsupported version {version}")


class PayloadValidationFailed(AccessError):
    """Header passed, but the full buffer failed structural validation."""

    def __init__(self, type_id: int, version: int, reason: str):
        self.type_id = type_id
        self.version = version
        self.reason = reason
        super().__init__(
            f"Payload validation failed for type_id {type_id} version {version}: {reason}"
        )


class EncodeError(VersionedArchiveError):
    """Serialization of a tagged envelope failed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to encode envelope: {reason}")


class DeclarationError(VersionedArchiveError):
    """A container declaration is malformed.

    Raised from the class statement, so the offending container is never
    bound. ``problems`` holds one message per offending variant.
    """

    def __init__(
        self,
        container: str,
        problems: Sequence[str],
        variants: Optional[Sequence[str]] = None,
    ):
        self.container = container
        self.problems = list(problems)
        self.variants = list(variants or [])
        super().__init__("; ".join(self.problems))
