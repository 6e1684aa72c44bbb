"""Tests for the zero-copy archive engine."""

from dataclasses import dataclass
from typing import NamedTuple

import pytest
from versioned_archive.archive import (
    F32,
    F64,
    I32,
    U8,
    U16,
    U64,
    Archived,
    ArchivedList,
    ArchiveError,
    access,
    describe,
    layout_of,
    serialize,
    structure,
)


@dataclass
class Point:
    x: I32
    y: I32


@dataclass
class Record:
    id: U64
    name: str
    blob: bytes
    tags: list[str]
    origin: Point
    points: list[Point]
    active: bool
    ratio: F64


@dataclass
class Named:
    name: str


@dataclass
class Flag:
    on: bool


@dataclass
class Counter:
    n: U8


@dataclass
class Defaults:
    n: int
    f: float


@dataclass
class Node:
    children: list["Node"]


@dataclass
class Untyped:
    options: dict


class Pair(NamedTuple):
    a: U16
    b: U16


@dataclass
class Ratio:
    value: F32


@dataclass
class Marker:
    pass


@dataclass
class Markers:
    items: list[Marker]


@dataclass
class Wrapped:
    markers: list[list[Marker]]


def make_record() -> Record:
    return Record(
        id=7,
        name="gauge",
        blob=b"\x00\xff",
        tags=["a", "bc"],
        origin=Point(-3, 1),
        points=[Point(1, 2), Point(3, 4)],
        active=True,
        ratio=0.5,
    )


class TestLayout:
    """Test layout computation."""

    def test_scalar_layout(self):
        """Scalars are packed in declaration order."""
        layout = layout_of(Point)

        assert layout.size == 8
        assert [(f.name, f.offset) for f in layout.fields] == [("x", 0), ("y", 4)]

    def test_record_layout(self):
        """Out-of-line fields take an 8-byte slot, nested shapes are inline."""
        layout = layout_of(Record)

        # u64 + str + bytes + list + Point + list + bool + f64
        assert layout.size == 8 + 8 + 8 + 8 + 8 + 8 + 1 + 8

    def test_describe(self):
        """describe() lists names, kinds, offsets and sizes."""
        fields = describe(layout_of(Record))

        assert fields[1] == {"name": "name", "type": "str", "offset": 8, "size": 8}
        assert fields[3]["type"] == "list[str]"
        assert fields[4]["type"] == "Point"
        assert fields[6] == {"name": "active", "type": "bool", "offset": 48, "size": 1}

    def test_plain_int_and_float(self):
        """Plain int and float default to 64-bit."""
        assert layout_of(Defaults).size == 16
        assert [f["type"] for f in describe(layout_of(Defaults))] == ["i64", "f64"]

    def test_namedtuple_shape(self):
        """NamedTuple classes are archivable too."""
        assert serialize(layout_of(Pair), Pair(1, 2)) == b"\x01\x00\x02\x00"

    def test_layout_is_cached(self):
        """Layouts are computed once per class."""
        assert layout_of(Point) is layout_of(Point)


class TestUnsupportedShapes:
    """Test rejection of shapes the engine cannot archive."""

    def test_not_a_shape(self):
        """Plain types are not archivable shapes."""
        with pytest.raises(ArchiveError, match="not an archivable shape"):
            layout_of(int)

    def test_unsupported_field_type(self):
        """Fields of unsupported types are rejected with their name."""
        with pytest.raises(ArchiveError, match="Untyped.options: unsupported field type"):
            layout_of(Untyped)

    def test_recursive_shape(self):
        """Self-referencing shapes are rejected."""
        with pytest.raises(ArchiveError, match="recursive"):
            layout_of(Node)

    def test_zero_size_list_elements(self):
        """Lists of shapes without fields are rejected."""
        with pytest.raises(ArchiveError, match="Markers.items: list elements of Marker"):
            layout_of(Markers)

    def test_zero_size_nested_list_elements(self):
        """The check applies at any list depth."""
        with pytest.raises(ArchiveError, match="occupy no bytes"):
            layout_of(Wrapped)

    def test_empty_shape_alone(self):
        """A field-less shape on its own archives to zero bytes."""
        assert layout_of(Marker).size == 0
        assert serialize(layout_of(Marker), Marker()) == b""


class TestSerialize:
    """Test archiving values."""

    def test_scalars_little_endian(self):
        """Signed scalars are little-endian two's complement."""
        assert serialize(layout_of(Point), Point(1, -1)) == b"\x01\x00\x00\x00\xff\xff\xff\xff"

    def test_string_slot(self):
        """Strings store (relative offset, length) and trail the fixed region."""
        data = serialize(layout_of(Named), Named("hi"))

        assert data == b"\x08\x00\x00\x00\x02\x00\x00\x00hi"

    def test_value_not_mutated(self):
        """Archiving only reads the value."""
        record = make_record()
        serialize(layout_of(Record), record)

        assert record == make_record()

    def test_out_of_range_scalar(self):
        """Values that do not fit their width are rejected."""
        with pytest.raises(ArchiveError, match="cannot archive 256 as u8"):
            serialize(layout_of(Counter), Counter(256))

    def test_float_overflow(self):
        """Floats too large for f32 are rejected, not raised as OverflowError."""
        with pytest.raises(ArchiveError, match=r"cannot archive 1e\+300 as f32"):
            serialize(layout_of(Ratio), Ratio(1e300))

    def test_wrong_text_type(self):
        """Non-str values for str fields are rejected."""
        with pytest.raises(ArchiveError, match="expected str"):
            serialize(layout_of(Named), Named(5))

    def test_wrong_bool_type(self):
        """Bool fields require real bools."""
        with pytest.raises(ArchiveError, match="expected bool"):
            serialize(layout_of(Flag), Flag(1))

    def test_unencodable_text(self):
        """Lone surrogates cannot be archived."""
        with pytest.raises(ArchiveError, match="UTF-8"):
            serialize(layout_of(Named), Named("\ud800"))

    def test_missing_attribute(self):
        """Values lacking a field are rejected."""
        with pytest.raises(ArchiveError, match="no field 'x'"):
            serialize(layout_of(Point), Named("x"))


class TestAccess:
    """Test validated zero-copy access."""

    @pytest.fixture
    def record_bytes(self):
        return serialize(layout_of(Record), make_record())

    def test_field_access(self, record_bytes):
        """Fields decode lazily from the buffer."""
        view = access(layout_of(Record), record_bytes)

        assert view.id == 7
        assert view.name == "gauge"
        assert bytes(view.blob) == b"\x00\xff"
        assert view.tags == ["a", "bc"]
        assert view.origin.x == -3
        assert view.points[1].y == 4
        assert view.active is True
        assert view.ratio == 0.5

    def test_bytes_are_zero_copy(self, record_bytes):
        """bytes fields come back as memoryview slices."""
        view = access(layout_of(Record), record_bytes)

        assert isinstance(view.blob, memoryview)
        assert isinstance(view.origin, Archived)
        assert isinstance(view.points, ArchivedList)

    def test_item_access(self, record_bytes):
        """Fields are also reachable by name."""
        view = access(layout_of(Record), record_bytes)

        assert view["name"] == "gauge"
        with pytest.raises(AttributeError, match="no field 'missing'"):
            view.missing

    def test_deserialize(self, record_bytes):
        """deserialize() copies into an owned instance."""
        owned = access(layout_of(Record), record_bytes).deserialize()

        assert owned == make_record()
        assert isinstance(owned.blob, bytes)
        assert isinstance(owned.origin, Point)

    def test_equality_with_owned(self, record_bytes):
        """Views compare equal to the value they archive."""
        view = access(layout_of(Record), record_bytes)

        assert view == make_record()
        assert view != Record(**{**make_record().__dict__, "name": "other"})
        assert view == access(layout_of(Record), record_bytes)

    def test_to_dict(self, record_bytes):
        """to_dict() returns plain values."""
        result = access(layout_of(Record), record_bytes).to_dict()

        assert result["origin"] == {"x": -3, "y": 1}
        assert result["points"] == [{"x": 1, "y": 2}, {"x": 3, "y": 4}]
        assert result["blob"] == b"\x00\xff"

    def test_list_indexing(self, record_bytes):
        """Archived lists support negative indices and slices."""
        tags = access(layout_of(Record), record_bytes).tags

        assert len(tags) == 2
        assert tags[-1] == "bc"
        assert tags[0:1] == ["a"]
        with pytest.raises(IndexError):
            tags[2]

    def test_access_at_offset(self):
        """Archives embedded after a prefix are read at their offset."""
        data = b"\xaa" * 5 + serialize(layout_of(Named), Named("hi"))

        assert access(layout_of(Named), data, 5).name == "hi"

    def test_repr(self):
        """repr shows the archived fields."""
        view = access(layout_of(Point), serialize(layout_of(Point), Point(1, 2)))

        assert repr(view) == "ArchivedPoint(x=1, y=2)"


class TestValidation:
    """Test structural validation of archived bytes."""

    def test_truncated_fixed_region(self):
        """Buffers shorter than the fixed region fail."""
        with pytest.raises(ArchiveError, match="Point needs 8 bytes"):
            access(layout_of(Point), b"\x00" * 7)

    def test_string_out_of_bounds(self):
        """String regions must lie inside the buffer."""
        data = bytearray(serialize(layout_of(Named), Named("hi")))
        data[4] = 50

        with pytest.raises(ArchiveError, match="exceeds buffer"):
            access(layout_of(Named), data)

    def test_truncated_string(self):
        """Dropping trailing string bytes fails validation."""
        data = serialize(layout_of(Named), Named("hello"))

        with pytest.raises(ArchiveError, match="exceeds buffer"):
            access(layout_of(Named), data[:-1])

    def test_invalid_utf8(self):
        """Strings must be valid UTF-8."""
        data = bytearray(serialize(layout_of(Named), Named("hi")))
        data[8] = 0xFF

        with pytest.raises(ArchiveError, match="invalid UTF-8"):
            access(layout_of(Named), data)

    def test_invalid_bool(self):
        """Bool bytes other than 0 and 1 are corruption."""
        assert access(layout_of(Flag), b"\x01").on is True

        with pytest.raises(ArchiveError, match="invalid bool byte 0x02"):
            access(layout_of(Flag), b"\x02")

    def test_nested_list_elements_validated(self):
        """Elements of lists are validated recursively."""
        record = make_record()
        record.tags = ["x"]
        record.points = []
        data = bytearray(serialize(layout_of(Record), record))
        # Tags are the last out-of-line data written
        data[-1] = 0xFF

        with pytest.raises(ArchiveError, match="invalid UTF-8"):
            access(layout_of(Record), data)

    def test_not_a_buffer(self):
        """Objects without a byte buffer are rejected."""
        with pytest.raises(ArchiveError, match="does not expose a byte buffer"):
            access(layout_of(Point), "text")

    def test_non_contiguous(self):
        """Strided views are rejected."""
        with pytest.raises(ArchiveError, match="not contiguous"):
            access(layout_of(Point), memoryview(bytes(16))[::2])


class TestBorrow:
    """Views borrow the buffer they were read from."""

    def test_bytearray_locked_while_view_live(self):
        """A live view prevents resizing its bytearray."""
        buf = bytearray(serialize(layout_of(Point), Point(1, 2)))
        view = access(layout_of(Point), buf)

        with pytest.raises(BufferError):
            buf.extend(b"\x00")

        view.release()
        buf.extend(b"\x00")
        assert len(buf) == 9

    def test_read_after_release_fails(self):
        """Released views refuse further reads."""
        view = access(layout_of(Point), serialize(layout_of(Point), Point(1, 2)))
        view.release()

        with pytest.raises(ValueError):
            view.x
        assert "released" in repr(view)

    def test_context_manager_releases(self):
        """Leaving a with block releases the buffer."""
        buf = bytearray(serialize(layout_of(Point), Point(5, 6)))

        with access(layout_of(Point), buf) as view:
            assert view.x == 5

        buf.extend(b"\x00")
        assert len(buf) == 9

    def test_bytes_slices_keep_their_own_borrow(self):
        """bytes fields read before release stay valid until released."""
        buf = bytearray(serialize(layout_of(Record), make_record()))
        view = access(layout_of(Record), buf)
        blob = view.blob

        view.release()

        assert bytes(blob) == b"\x00\xff"
        with pytest.raises(BufferError):
            buf.extend(b"\x00")

        blob.release()
        buf.extend(b"\x00")


class TestStructure:
    """Test building owned values from plain data."""

    def test_structure_nested(self):
        """Nested dicts and hex bytes are converted."""
        data = {
            "id": 7,
            "name": "gauge",
            "blob": "00ff",
            "tags": ["a", "bc"],
            "origin": {"x": -3, "y": 1},
            "points": [{"x": 1, "y": 2}, {"x": 3, "y": 4}],
            "active": True,
            "ratio": 0.5,
        }

        assert structure(Record, data) == make_record()

    def test_structure_unknown_field(self):
        """Unknown keys are rejected."""
        with pytest.raises(ArchiveError, match="unknown fields for Point: z"):
            structure(Point, {"x": 1, "y": 2, "z": 3})

    def test_structure_missing_field(self):
        """Missing keys are rejected."""
        with pytest.raises(ArchiveError, match="cannot build Point"):
            structure(Point, {"x": 1})

    def test_structure_not_a_mapping(self):
        """Shapes need a mapping."""
        with pytest.raises(ArchiveError, match="expected a mapping"):
            structure(Point, [1, 2])
