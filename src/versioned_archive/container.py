"""Versioned container declarations.

A container is a sum type whose variants each wrap exactly one archivable
payload. Declaring one binds a type id, version dispatch, a version
validity check and envelope reading and writing to the class:

    class Container(VersionedContainer):
        class V1:
            payload: PayloadV1

        class V2:
            payload: PayloadV2

Version ids follow declaration order (V1 -> 0, V2 -> 1). There is no
override: reordering or removing variants changes the meaning of envelopes
already written.
"""

import dataclasses
import inspect
import sys
import types
from collections.abc import Mapping
from typing import Any, ClassVar, Optional

from versioned_archive.archive import Archived, ArchiveError, layout_of
from versioned_archive.envelope import EnvelopeCodec
from versioned_archive.errors import DeclarationError
from versioned_archive.identity import derive_id
from versioned_archive.registry import default_registry


class VersionedContainer:
    """Base class for versioned container declarations.

    Subclasses are checked and bound when the class statement runs; a
    malformed declaration raises DeclarationError and the class is never
    created. Pass ``register=False`` to keep it out of the default registry.
    """

    ARCHIVE_TYPE_ID: ClassVar[int]
    VARIANTS: ClassVar[tuple] = ()
    PAYLOAD_TYPES: ClassVar[tuple] = ()
    version_id: ClassVar[Optional[int]] = None
    _codec: ClassVar[EnvelopeCodec]
    _payload_field: ClassVar[str]

    def __init_subclass__(cls, register: bool = True, _variant_of: Optional[type] = None, **kwargs):
        super().__init_subclass__(**kwargs)
        if _variant_of is not None:
            return
        _generate(cls)
        if register:
            default_registry.register(cls, override=True)

    def __new__(cls, *args, **kwargs):
        if cls.version_id is None:
            raise TypeError(
                f"{cls.__qualname__} is a versioned container; instantiate one of its variants"
            )
        return super().__new__(cls)

    def unwrap(self) -> Any:
        """Return the payload this variant wraps."""
        return getattr(self, self._payload_field)

    def to_bytes(self) -> bytes:
        return type(self).to_tagged_bytes(self)

    @classmethod
    def is_valid_version_id(cls, version: int) -> bool:
        return cls._codec.is_valid_version_id(version)

    @classmethod
    def get_entry_version_id(cls, item: "VersionedContainer") -> int:
        """Version id of the variant ``item`` is an instance of.

        Raises:
            TypeError: If ``item`` is not a variant of this container
        """
        if type(item) not in cls.VARIANTS:
            raise TypeError(f"{item!r} is not a variant of {cls.__qualname__}")
        return type(item).version_id

    @classmethod
    def to_tagged_bytes(cls, item: "VersionedContainer") -> bytes:
        """Serialize a variant into a tagged envelope.

        Raises:
            TypeError: If ``item`` is not a variant of this container
            EncodeError: If the payload cannot be archived
        """
        return cls._codec.write(cls.get_entry_version_id(item), item.unwrap())

    @classmethod
    def get_type_and_version_from_tagged_bytes(cls, buf: Any) -> tuple[int, int]:
        """Read ``(type_id, version)`` from a tagged buffer without validating the payload."""
        return cls._codec.peek(buf)

    @classmethod
    def get_ref_from_tagged_bytes(cls, buf: Any) -> "VersionedContainer":
        """Validate a tagged buffer and return the matching variant.

        The variant wraps a zero-copy Archived view of the payload that
        borrows ``buf``. Release it (or use it as a context manager) to
        hand the buffer back.

        Raises:
            AccessError: HeaderTooShort, HeaderMalformed, TypeMismatch,
                UnsupportedVersion or PayloadValidationFailed
        """
        version, payload = cls._codec.access(buf)
        return cls.VARIANTS[version](payload)

    @classmethod
    def from_tagged_bytes(cls, buf: Any) -> "VersionedContainer":
        """Like get_ref_from_tagged_bytes, but returns a variant owning a copy of the payload."""
        entry = cls.get_ref_from_tagged_bytes(buf)
        view: Archived = entry.unwrap()
        with view:
            return type(entry)(view.deserialize())

    peek = get_type_and_version_from_tagged_bytes
    access = get_ref_from_tagged_bytes


_BOUND_NAMES = frozenset(dir(VersionedContainer)).union(
    inspect.get_annotations(VersionedContainer)
)


def _variant_field(label: str, variant: type, container: type, problems: list) -> Optional[tuple]:
    try:
        annotations = inspect.get_annotations(variant, eval_str=True)
    except NameError as e:
        problems.append(f"Cannot resolve payload field of {label}: {e}")
        return None
    if len(annotations) != 1:
        found = "no" if not annotations else str(len(annotations))
        problems.append(
            f"Only one payload field per variant is supported, found {found} fields in {label}"
        )
        return None
    (field, payload_type), = annotations.items()
    if field.startswith("_") or hasattr(container, field):
        problems.append(f"Payload field {field!r} of {label} collides with a container attribute")
        return None
    try:
        layout_of(payload_type)
    except (ArchiveError, TypeError) as e:
        problems.append(f"Payload {payload_type!r} of {label} is not archivable: {e}")
        return None
    return field, payload_type


def _generate(cls: type) -> None:
    name = cls.__name__
    own_fields = inspect.get_annotations(cls)
    if own_fields:
        raise DeclarationError(name, [
            f"{name} declares fields ({', '.join(own_fields)}); "
            "versioned containers are only defined for sum types of variant classes"
        ])
    declared = [(attr, value) for attr, value in vars(cls).items() if isinstance(value, type)]
    if not declared:
        raise DeclarationError(name, [f"{name} declares no variants"])

    problems: list[str] = []
    offending: list[str] = []
    specs = []
    for attr, variant in declared:
        label = f"{name}.{attr}"
        if attr.startswith("_") or attr in _BOUND_NAMES:
            problems.append(f"Variant name of {label} collides with a container attribute")
            offending.append(label)
            continue
        spec = _variant_field(label, variant, cls, problems)
        if spec is None:
            offending.append(label)
        else:
            specs.append((attr, variant) + spec)
    if problems:
        raise DeclarationError(name, problems, offending)

    variants = []
    for version, (attr, variant, field, payload_type) in enumerate(specs):
        body = {k: v for k, v in vars(variant).items() if not k.startswith("__")}
        body.update({
            "__module__": cls.__module__,
            "__qualname__": f"{cls.__qualname__}.{attr}",
            "__doc__": variant.__doc__,
            "__annotations__": {field: payload_type},
            "version_id": version,
            "_payload_field": field,
        })
        entry_cls = types.new_class(
            attr, (cls,), {"_variant_of": cls}, lambda ns, body=body: ns.update(body)
        )
        entry_cls = dataclasses.dataclass(frozen=True)(entry_cls)
        setattr(cls, attr, entry_cls)
        variants.append(entry_cls)

    cls.ARCHIVE_TYPE_ID = derive_id(cls.__name__)
    cls.VARIANTS = tuple(variants)
    cls.PAYLOAD_TYPES = tuple(spec[3] for spec in specs)
    cls._codec = EnvelopeCodec(cls.ARCHIVE_TYPE_ID, cls.PAYLOAD_TYPES)


def make_container(
    name: str,
    variants: Mapping[str, type],
    *,
    module: Optional[str] = None,
    register: bool = True,
) -> type:
    """Declare a container from a ``{variant name: payload class}`` mapping.

    Variants get version ids in mapping order and wrap their payload in a
    field named ``payload``.

    Raises:
        DeclarationError: If the mapping does not describe a valid container
    """
    if not isinstance(variants, Mapping):
        raise DeclarationError(name, [f"{name} variants must be a mapping of name to payload class"])
    if module is None:
        module = sys._getframe(1).f_globals.get("__name__", "__main__")
    body = {"__module__": module, "__qualname__": name}
    for variant_name, payload_type in variants.items():
        body[variant_name] = type(variant_name, (), {
            "__module__": module,
            "__qualname__": f"{name}.{variant_name}",
            "__annotations__": {"payload": payload_type},
        })
    return types.new_class(
        name, (VersionedContainer,), {"register": register}, lambda ns: ns.update(body)
    )
