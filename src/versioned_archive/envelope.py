"""Tagged envelope writing and reading.

The envelope format:
- Type id (4 bytes): identifier of the declaring container
- Version (4 bytes): version id of the selected variant
- Payload (variable): archived form of the variant's payload

Reading is staged cheapest-first: header decode, type check, version check,
then full structural validation of the whole buffer.
"""

from functools import lru_cache
from typing import Any, NamedTuple, Sequence

from versioned_archive.archive import (
    U32,
    Archived,
    ArchiveError,
    StructLayout,
    access,
    byte_view,
    layout_of,
    serialize,
)
from versioned_archive.errors import (
    EncodeError,
    HeaderMalformed,
    PayloadValidationFailed,
    TypeMismatch,
    UnsupportedVersion,
)
from versioned_archive.header import decode_header


@lru_cache(maxsize=None)
def tagged_layout(payload_type: type) -> StructLayout:
    """Layout of a full tagged envelope carrying ``payload_type``.

    Raises:
        ArchiveError: If ``payload_type`` is not archivable
    """
    layout_of(payload_type)
    tagged = NamedTuple(
        f"Tagged{payload_type.__name__}",
        [("type_id", U32), ("version", U32), ("payload", payload_type)],
    )
    return layout_of(tagged)


def write(type_id: int, version: int, payload: Any) -> bytes:
    """Serialize ``(type_id, version, payload)`` into a new tagged buffer.

    Args:
        type_id: Container type identifier
        version: Version id of the payload's variant
        payload: Archivable payload (dataclass or NamedTuple instance)

    Returns:
        Tagged envelope bytes

    Raises:
        EncodeError: If the engine cannot archive the envelope
    """
    return _write_as(type(payload), type_id, version, payload)


def _write_as(payload_type: type, type_id: int, version: int, payload: Any) -> bytes:
    try:
        layout = tagged_layout(payload_type)
        return serialize(layout, layout.cls(type_id, version, payload))
    except ArchiveError as e:
        raise EncodeError(str(e)) from e


def peek(buf: Any) -> tuple[int, int]:
    """Read ``(type_id, version)`` without looking at the payload.

    Raises:
        HeaderTooShort: If the buffer is shorter than the header
        HeaderMalformed: If the header region cannot be read
    """
    header = decode_header(buf)
    return header.type_id, header.version


class EnvelopeCodec:
    """Envelope writer and reader bound to one container.

    Args:
        type_id: Identifier every envelope of this container carries
        payload_types: Payload class per version id, in version order
    """

    def __init__(self, type_id: int, payload_types: Sequence[type]):
        self.type_id = type_id
        self.payload_types = tuple(payload_types)

    def __repr__(self) -> str:
        return f"EnvelopeCodec(type_id={self.type_id:#010x}, versions={len(self.payload_types)})"

    @property
    def version_count(self) -> int:
        return len(self.payload_types)

    def is_valid_version_id(self, version: int) -> bool:
        return 0 <= version < len(self.payload_types)

    def write(self, version: int, payload: Any) -> bytes:
        """Serialize a payload under one of this container's versions.

        Raises:
            UnsupportedVersion: If ``version`` is not declared
            EncodeError: If ``payload`` is not of the version's payload type,
                or the engine cannot archive it
        """
        if not self.is_valid_version_id(version):
            raise UnsupportedVersion(version)
        expected = self.payload_types[version]
        if not isinstance(payload, expected):
            raise EncodeError(
                f"version {version} carries {expected.__name__}, got {type(payload).__name__}"
            )
        return _write_as(expected, self.type_id, version, payload)

    def peek(self, buf: Any) -> tuple[int, int]:
        return peek(buf)

    def access(self, buf: Any) -> tuple[int, Archived]:
        """Validate a tagged buffer and return a view of its payload.

        The returned view borrows ``buf``; it must not outlive it.

        Returns:
            ``(version, payload view)``

        Raises:
            HeaderTooShort, HeaderMalformed: If the header cannot be read
            TypeMismatch: If the buffer belongs to another container
            UnsupportedVersion: If the version is not declared
            PayloadValidationFailed: If the full buffer is structurally unsound
        """
        try:
            view = byte_view(buf)
        except ArchiveError as e:
            raise HeaderMalformed(str(e)) from e
        with view:
            type_id, version = peek(view)
            if type_id != self.type_id:
                raise TypeMismatch(self.type_id, type_id)
            if not self.is_valid_version_id(version):
                raise UnsupportedVersion(version)
            try:
                tagged = access(tagged_layout(self.payload_types[version]), view)
            except ArchiveError as e:
                raise PayloadValidationFailed(type_id, version, str(e)) from e
        return version, tagged.payload
