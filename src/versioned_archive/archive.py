"""Zero-copy archive engine.

Values of dataclass or NamedTuple shapes are archived into a flat byte
buffer and read back through lazy views that decode fields straight out of
the buffer.

Archived layout:
- Scalars (U8..U64, I8..I64, F32, F64, bool): fixed width, little-endian
- str / bytes: 8-byte slot (relative offset u32, length u32), data out of line
- list[T]: 8-byte slot (relative offset u32, count u32), elements out of line
- Nested shapes: stored inline

Fields are packed in declaration order with no padding. Relative offsets
are measured from the slot's own position, so an archived shape can be
embedded at any offset of a larger buffer.
"""

import dataclasses
import struct
import typing
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Annotated, Any, Optional


class ArchiveError(ValueError):
    """Raised when a value cannot be archived or bytes fail validation."""


@dataclasses.dataclass(frozen=True)
class Scalar:
    """Fixed-width scalar marker used inside ``Annotated`` field types."""

    name: str
    fmt: str


U8 = Annotated[int, Scalar("u8", "<B")]
U16 = Annotated[int, Scalar("u16", "<H")]
U32 = Annotated[int, Scalar("u32", "<I")]
U64 = Annotated[int, Scalar("u64", "<Q")]
I8 = Annotated[int, Scalar("i8", "<b")]
I16 = Annotated[int, Scalar("i16", "<h")]
I32 = Annotated[int, Scalar("i32", "<i")]
I64 = Annotated[int, Scalar("i64", "<q")]
F32 = Annotated[float, Scalar("f32", "<f")]
F64 = Annotated[float, Scalar("f64", "<d")]

_BOOL = Scalar("bool", "<?")
_DEFAULTS = {
    bool: _BOOL,
    int: Scalar("i64", "<q"),
    float: Scalar("f64", "<d"),
}

_SLOT = struct.Struct("<II")


def _pack_slot(out: bytearray, pos: int, target: int, count: int) -> None:
    try:
        _SLOT.pack_into(out, pos, target - pos, count)
    except struct.error as e:
        raise ArchiveError(f"out-of-line region too large: {e}") from e


def _slot(view: memoryview, pos: int) -> tuple[int, int]:
    rel, count = _SLOT.unpack_from(view, pos)
    return pos + rel, count


def _resolve(view: memoryview, pos: int, elem_size: int) -> tuple[int, int]:
    start, count = _slot(view, pos)
    end = start + count * elem_size
    if end > len(view):
        raise ArchiveError(
            f"out-of-line region [{start}, {end}) exceeds buffer of {len(view)} bytes"
        )
    return start, count


class _ScalarKind:
    def __init__(self, scalar: Scalar):
        self.name = scalar.name
        self._struct = struct.Struct(scalar.fmt)
        self.size = self._struct.size
        self._is_bool = scalar == _BOOL

    def write(self, out: bytearray, value: Any, pos: int) -> None:
        if self._is_bool and not isinstance(value, bool):
            raise ArchiveError(f"expected bool, got {type(value).__name__}")
        try:
            self._struct.pack_into(out, pos, value)
        except (struct.error, OverflowError) as e:
            raise ArchiveError(f"cannot archive {value!r} as {self.name}: {e}") from e

    def validate(self, view: memoryview, pos: int) -> None:
        # Bool bytes other than 0/1 are corruption, not truthy values
        if self._is_bool and view[pos] > 1:
            raise ArchiveError(f"invalid bool byte {view[pos]:#04x} at offset {pos}")

    def read(self, view: memoryview, pos: int) -> Any:
        return self._struct.unpack_from(view, pos)[0]

    def owned(self, value: Any) -> Any:
        return value

    def structure(self, data: Any) -> Any:
        return data


class _BlobKind:
    """Out-of-line str or bytes."""

    size = _SLOT.size

    def __init__(self, text: bool):
        self._text = text
        self.name = "str" if text else "bytes"

    def write(self, out: bytearray, value: Any, pos: int) -> None:
        if self._text:
            if not isinstance(value, str):
                raise ArchiveError(f"expected str, got {type(value).__name__}")
            try:
                data = value.encode("utf-8")
            except UnicodeEncodeError as e:
                raise ArchiveError(f"cannot encode text as UTF-8: {e}") from e
        else:
            if not isinstance(value, (bytes, bytearray, memoryview)):
                raise ArchiveError(f"expected bytes, got {type(value).__name__}")
            data = bytes(value)
        target = len(out)
        out += data
        _pack_slot(out, pos, target, len(data))

    def validate(self, view: memoryview, pos: int) -> None:
        start, length = _resolve(view, pos, 1)
        if self._text:
            try:
                str(view[start:start + length], "utf-8")
            except UnicodeDecodeError as e:
                raise ArchiveError(f"invalid UTF-8 in string at offset {start}: {e}") from e

    def read(self, view: memoryview, pos: int) -> Any:
        start, length = _slot(view, pos)
        if self._text:
            return str(view[start:start + length], "utf-8")
        return view[start:start + length]

    def owned(self, value: Any) -> Any:
        return value if self._text else bytes(value)

    def structure(self, data: Any) -> Any:
        if not self._text and isinstance(data, str):
            return bytes.fromhex(data)
        return data


class _ListKind:
    size = _SLOT.size

    def __init__(self, elem):
        self.elem = elem
        self.name = f"list[{elem.name}]"

    def write(self, out: bytearray, value: Any, pos: int) -> None:
        if isinstance(value, (str, bytes, bytearray)) or not isinstance(value, Sequence):
            raise ArchiveError(f"expected a sequence, got {type(value).__name__}")
        target = len(out)
        out += bytes(len(value) * self.elem.size)
        _pack_slot(out, pos, target, len(value))
        for i, item in enumerate(value):
            self.elem.write(out, item, target + i * self.elem.size)

    def validate(self, view: memoryview, pos: int) -> None:
        start, count = _resolve(view, pos, self.elem.size)
        for i in range(count):
            self.elem.validate(view, start + i * self.elem.size)

    def read(self, view: memoryview, pos: int) -> "ArchivedList":
        start, count = _slot(view, pos)
        return ArchivedList(self.elem, view, start, count)

    def owned(self, value: Any) -> list:
        return [self.elem.owned(item) for item in value]

    def structure(self, data: Any) -> list:
        return [self.elem.structure(item) for item in data]


@dataclasses.dataclass(frozen=True)
class FieldLayout:
    """Position of one named field inside an archived shape."""

    name: str
    offset: int
    kind: Any


class StructLayout:
    """Archived layout of a dataclass or NamedTuple shape."""

    def __init__(self, cls: type, fields: list[tuple[str, Any]]):
        self.cls = cls
        self.name = cls.__name__
        offset = 0
        laid_out = []
        for name, kind in fields:
            laid_out.append(FieldLayout(name, offset, kind))
            offset += kind.size
        self.fields = tuple(laid_out)
        self.size = offset
        self._by_name = {f.name: f for f in self.fields}

    def __repr__(self) -> str:
        return f"StructLayout({self.name}, size={self.size})"

    def field(self, name: str) -> Optional[FieldLayout]:
        return self._by_name.get(name)

    def write(self, out: bytearray, value: Any, pos: int) -> None:
        for f in self.fields:
            try:
                item = getattr(value, f.name)
            except AttributeError as e:
                raise ArchiveError(
                    f"{type(value).__name__} has no field {f.name!r} required by {self.name}"
                ) from e
            f.kind.write(out, item, pos + f.offset)

    def validate(self, view: memoryview, pos: int) -> None:
        if pos + self.size > len(view):
            raise ArchiveError(
                f"{self.name} needs {self.size} bytes at offset {pos}, "
                f"buffer has {max(len(view) - pos, 0)}"
            )
        for f in self.fields:
            f.kind.validate(view, pos + f.offset)

    def read(self, view: memoryview, pos: int) -> "Archived":
        return Archived(self, view, pos)

    def owned(self, value: "Archived") -> Any:
        return value.deserialize()

    def structure(self, data: Any) -> Any:
        if isinstance(data, self.cls):
            return data
        if not isinstance(data, Mapping):
            raise ArchiveError(f"expected a mapping for {self.name}, got {type(data).__name__}")
        unknown = set(data) - set(self._by_name)
        if unknown:
            raise ArchiveError(f"unknown fields for {self.name}: {', '.join(sorted(unknown))}")
        values = {f.name: f.kind.structure(data[f.name]) for f in self.fields if f.name in data}
        try:
            return self.cls(**values)
        except TypeError as e:
            raise ArchiveError(f"cannot build {self.name}: {e}") from e


class Archived:
    """Lazy, zero-copy view of an archived shape.

    Field reads decode directly from the underlying buffer. The view holds a
    memoryview on that buffer: a bytearray source cannot be resized while the
    view is live, and after release() every read raises ValueError.
    """

    __slots__ = ("_layout", "_view", "_pos")

    def __init__(self, layout: StructLayout, view: memoryview, pos: int = 0):
        self._layout = layout
        self._view = view
        self._pos = pos

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name: str) -> Any:
        f = self._layout.field(name)
        if f is None:
            raise AttributeError(f"archived {self._layout.name} has no field {name!r}")
        return f.kind.read(self._view, self._pos + f.offset)

    def __dir__(self):
        return sorted(set(super().__dir__()) | set(self._layout._by_name))

    def __repr__(self) -> str:
        try:
            fields = ", ".join(f"{f.name}={self[f.name]!r}" for f in self._layout.fields)
        except ValueError:
            return f"<Archived{self._layout.name} (released)>"
        return f"Archived{self._layout.name}({fields})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Archived):
            return (
                self._layout.cls is other._layout.cls
                and self.deserialize() == other.deserialize()
            )
        if isinstance(other, self._layout.cls):
            return self.deserialize() == other
        return NotImplemented

    __hash__ = None

    def __enter__(self) -> "Archived":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    @property
    def layout(self) -> StructLayout:
        return self._layout

    def deserialize(self) -> Any:
        """Copy the archived value into an owned instance of its class."""
        values = {
            f.name: f.kind.owned(f.kind.read(self._view, self._pos + f.offset))
            for f in self._layout.fields
        }
        return self._layout.cls(**values)

    def to_dict(self) -> dict:
        """Return the archived fields as plain Python values."""
        return {f.name: _plain(self[f.name]) for f in self._layout.fields}

    def release(self) -> None:
        """Release the buffer borrowed by this view and the nested views sharing it.

        bytes fields read earlier are separate memoryview slices; each keeps
        its own borrow until it is released.
        """
        self._view.release()


class ArchivedList(Sequence):
    """Lazy, zero-copy view of an archived list."""

    __slots__ = ("_kind", "_view", "_start", "_count")

    def __init__(self, kind, view: memoryview, start: int, count: int):
        self._kind = kind
        self._view = view
        self._start = start
        self._count = count

    def __len__(self) -> int:
        return self._count

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(self._count))]
        if index < 0:
            index += self._count
        if not 0 <= index < self._count:
            raise IndexError("archived list index out of range")
        return self._kind.read(self._view, self._start + index * self._kind.size)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (list, tuple, ArchivedList)):
            return len(self) == len(other) and all(a == b for a, b in zip(self, other))
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"ArchivedList({list(self)!r})"


def _plain(value: Any) -> Any:
    if isinstance(value, Archived):
        return value.to_dict()
    if isinstance(value, ArchivedList):
        return [_plain(item) for item in value]
    if isinstance(value, memoryview):
        return bytes(value)
    return value


def _field_names(cls: Any) -> list[str]:
    if isinstance(cls, type) and dataclasses.is_dataclass(cls):
        return [f.name for f in dataclasses.fields(cls)]
    if isinstance(cls, type) and issubclass(cls, tuple) and hasattr(cls, "_fields"):
        return list(cls._fields)
    raise ArchiveError(f"{cls!r} is not an archivable shape (dataclass or NamedTuple)")


def _is_shape(tp: Any) -> bool:
    return isinstance(tp, type) and (
        dataclasses.is_dataclass(tp) or (issubclass(tp, tuple) and hasattr(tp, "_fields"))
    )


def _kind_for(tp: Any, stack: tuple) -> Any:
    if typing.get_origin(tp) is Annotated:
        for meta in tp.__metadata__:
            if isinstance(meta, Scalar):
                return _ScalarKind(meta)
        return _kind_for(typing.get_args(tp)[0], stack)
    if tp in _DEFAULTS:
        return _ScalarKind(_DEFAULTS[tp])
    if tp is str:
        return _BlobKind(text=True)
    if tp is bytes:
        return _BlobKind(text=False)
    if typing.get_origin(tp) is list:
        args = typing.get_args(tp)
        if len(args) != 1:
            raise ArchiveError(f"list field needs exactly one element type, got {tp!r}")
        elem = _kind_for(args[0], stack)
        if elem.size == 0:
            raise ArchiveError(f"list elements of {elem.name} occupy no bytes")
        return _ListKind(elem)
    if _is_shape(tp):
        return _build_layout(tp, stack)
    raise ArchiveError(f"unsupported field type {tp!r}")


def _build_layout(cls: Any, stack: tuple) -> StructLayout:
    if cls in stack:
        raise ArchiveError(f"recursive shape {cls.__name__} cannot be archived")
    names = _field_names(cls)
    try:
        hints = typing.get_type_hints(cls, include_extras=True)
    except (NameError, TypeError) as e:
        raise ArchiveError(f"cannot resolve field types of {cls.__name__}: {e}") from e
    fields = []
    for name in names:
        try:
            fields.append((name, _kind_for(hints[name], stack + (cls,))))
        except ArchiveError as e:
            raise ArchiveError(f"{cls.__name__}.{name}: {e}") from e
    return StructLayout(cls, fields)


@lru_cache(maxsize=None)
def layout_of(cls: type) -> StructLayout:
    """Compute the archived layout of a dataclass or NamedTuple class.

    Raises:
        ArchiveError: If the class or one of its field types is unsupported
    """
    return _build_layout(cls, ())


def byte_view(buf: Any) -> memoryview:
    """Return a flat unsigned-byte memoryview over any contiguous buffer."""
    try:
        view = memoryview(buf)
    except TypeError as e:
        raise ArchiveError(f"{type(buf).__name__} does not expose a byte buffer") from e
    if not view.c_contiguous:
        raise ArchiveError("buffer is not contiguous")
    if view.format != "B" or view.ndim != 1:
        view = view.cast("B")
    return view


def serialize(layout: StructLayout, value: Any) -> bytes:
    """Archive ``value`` according to ``layout``.

    The value is only read, never copied or mutated.

    Raises:
        ArchiveError: If a field is missing, has the wrong type or is out of range
    """
    out = bytearray(layout.size)
    layout.write(out, value, 0)
    return bytes(out)


def access(layout: StructLayout, buf: Any, pos: int = 0) -> Archived:
    """Validate ``buf`` as an archive of ``layout`` and return a view into it.

    Every region reachable from ``pos`` is bounds-checked and every string
    is checked for valid UTF-8 before the view is returned.

    Raises:
        ArchiveError: If the buffer is not a structurally sound archive
    """
    view = byte_view(buf)
    layout.validate(view, pos)
    return Archived(layout, view, pos)


def structure(cls: type, data: Any) -> Any:
    """Build an instance of ``cls`` from plain data (dicts, lists, hex for bytes)."""
    return layout_of(cls).structure(data)


def describe(layout: StructLayout) -> list[dict]:
    """Describe the fields of a layout for introspection."""
    return [
        {"name": f.name, "type": f.kind.name, "offset": f.offset, "size": f.kind.size}
        for f in layout.fields
    ]
