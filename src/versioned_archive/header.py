"""Envelope header encoding and decoding.

The header is the first fixed-size region of every tagged buffer:
- Type id (4 bytes): identifier of the declaring container
- Version (4 bytes): zero-based variant index

Both fields are archived through the engine, so they share its integer
representation (unsigned, little-endian) and can be read without touching
the payload region.
"""

from typing import Any, NamedTuple

from versioned_archive.archive import U32, ArchiveError, access, layout_of, serialize
from versioned_archive.errors import HeaderMalformed, HeaderTooShort


class EnvelopeHeader(NamedTuple):
    """Decoded envelope header."""

    type_id: U32
    version: U32


HEADER_LAYOUT = layout_of(EnvelopeHeader)
HEADER_SIZE = HEADER_LAYOUT.size


def encode_header(type_id: int, version: int) -> bytes:
    """Encode a header.

    Args:
        type_id: Container type identifier
        version: Version id of the selected variant

    Returns:
        HEADER_SIZE bytes

    Raises:
        ArchiveError: If either field does not fit in 32 bits
    """
    return serialize(HEADER_LAYOUT, EnvelopeHeader(type_id, version))


def decode_header(buf: Any) -> EnvelopeHeader:
    """Decode the header at the start of a tagged buffer.

    Only the first HEADER_SIZE bytes are read; the payload region may be
    missing, truncated or corrupt.

    Args:
        buf: Any object exposing a contiguous byte buffer

    Returns:
        Decoded EnvelopeHeader

    Raises:
        HeaderMalformed: If the engine cannot view the header region
        HeaderTooShort: If fewer than HEADER_SIZE bytes are present
    """
    try:
        view = memoryview(buf)
    except TypeError as e:
        raise HeaderMalformed(f"{type(buf).__name__} does not expose a byte buffer") from e
    with view:
        if view.nbytes < HEADER_SIZE:
            raise HeaderTooShort(view.nbytes, HEADER_SIZE)
        try:
            return _read(view)
        except ArchiveError as e:
            raise HeaderMalformed(str(e)) from e


def _read(view: memoryview) -> EnvelopeHeader:
    head = access(HEADER_LAYOUT, view)
    with head:
        return EnvelopeHeader(head.type_id, head.version)
