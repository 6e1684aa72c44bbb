"""Stable 32-bit type identifiers derived from type names."""

import zlib


def derive_id(name: str) -> int:
    """Derive the 32-bit identifier for a type name.

    CRC-32 (IEEE polynomial) over the UTF-8 bytes of the name. Deterministic
    across processes and builds as long as the name is unchanged.

    Args:
        name: Declared type name

    Returns:
        Unsigned 32-bit identifier
    """
    return zlib.crc32(name.encode("utf-8")) & 0xFFFFFFFF
