"""Versioned binary envelopes for zero-copy archived records."""

__version__ = "0.1.0"

# Container declarations
from versioned_archive.container import VersionedContainer, make_container

# Type identity
from versioned_archive.identity import derive_id

# Archive engine
from versioned_archive.archive import (
    U8,
    U16,
    U32,
    U64,
    I8,
    I16,
    I32,
    I64,
    F32,
    F64,
    Archived,
    ArchivedList,
    ArchiveError,
    layout_of,
)

# Header and envelope encoding/decoding
from versioned_archive.header import HEADER_SIZE, EnvelopeHeader, decode_header, encode_header
from versioned_archive.envelope import EnvelopeCodec, peek, write

# Registry
from versioned_archive.registry import ContainerRegistry, RegistryError, default_registry

# Errors
from versioned_archive.errors import (
    AccessError,
    DeclarationError,
    EncodeError,
    HeaderError,
    HeaderMalformed,
    HeaderTooShort,
    PayloadValidationFailed,
    TypeMismatch,
    UnsupportedVersion,
    VersionedArchiveError,
)

__all__ = [
    # Version
    "__version__",
    # Containers
    "VersionedContainer",
    "make_container",
    # Identity
    "derive_id",
    # Archive
    "U8",
    "U16",
    "U32",
    "U64",
    "I8",
    "I16",
    "I32",
    "I64",
    "F32",
    "F64",
    "Archived",
    "ArchivedList",
    "ArchiveError",
    "layout_of",
    # Header / envelope
    "HEADER_SIZE",
    "EnvelopeHeader",
    "encode_header",
    "decode_header",
    "EnvelopeCodec",
    "peek",
    "write",
    # Registry
    "ContainerRegistry",
    "RegistryError",
    "default_registry",
    # Errors
    "AccessError",
    "DeclarationError",
    "EncodeError",
    "HeaderError",
    "HeaderMalformed",
    "HeaderTooShort",
    "PayloadValidationFailed",
    "TypeMismatch",
    "UnsupportedVersion",
    "VersionedArchiveError",
]
