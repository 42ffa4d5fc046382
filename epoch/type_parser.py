"""Reflective conversion of Python types into schema graphs.

Named structs (dataclasses and pydantic models, django-ninja ``Schema`` included) become
components referenced by ``$ref``; everything else is returned inline. A ``TypeParser``
instance holds the caches of one traversal and must be ``reset()`` between independent
walks.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import datetime
import decimal
import enum
import logging
import types
import typing
import uuid
from dataclasses import dataclass
from typing import Any, Annotated, Literal, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel

from epoch.schema import Schema, SchemaError, SchemaRef
from epoch.tags import SKIP_FIELD, TagParser, Tags
from epoch.types import FLOAT_WIDTHS, INTEGER_WIDTHS

logger = logging.getLogger(__name__)


# === Exceptions ===


class UnsupportedKind(SchemaError):
    """The type cannot be represented as a schema."""

    def __init__(self, tp: Any, reason: str = ""):
        self.type = tp
        message = f"unsupported type kind: {type_name(tp)}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class UnsupportedMapKey(SchemaError):
    """Only string-keyed mappings can be represented."""

    def __init__(self, tp: Any, key_type: Any):
        self.type = tp
        self.key_type = key_type
        super().__init__(
            f"only str-keyed mappings are supported, got {type_name(key_type)} keys in {tp!r}"
        )


# === Type helpers ===

_SEQUENCE_ORIGINS = {
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Collection,
    collections.abc.Iterable,
}

_MAPPING_ORIGINS = {
    dict,
    collections.defaultdict,
    collections.OrderedDict,
    collections.abc.Mapping,
    collections.abc.MutableMapping,
}


def _is_union(tp: Any) -> bool:
    return get_origin(tp) in (Union, types.UnionType)


# TypedDict key qualifiers; ReadOnly only exists on newer interpreters.
_KEY_QUALIFIERS = tuple(
    qualifier
    for qualifier in (typing.Required, typing.NotRequired, getattr(typing, "ReadOnly", None))
    if qualifier is not None
)


def unwrap_type(tp: Any) -> Any:
    """Strip transparent indirection: ``Optional``, ``Annotated``, aliases, TypedDict key
    qualifiers and plain ``NewType``s.

    Sized marker NewTypes (``Int32`` ...) are kept since they carry format information.
    """
    while True:
        if isinstance(tp, typing.TypeAliasType):
            tp = tp.__value__
        elif get_origin(tp) is Annotated or get_origin(tp) in _KEY_QUALIFIERS:
            tp = get_args(tp)[0]
        elif _is_union(tp):
            members = [arg for arg in get_args(tp) if arg is not type(None)]
            if len(members) != 1:
                return tp
            tp = members[0]
        elif isinstance(tp, typing.NewType) and tp not in INTEGER_WIDTHS and tp not in FLOAT_WIDTHS:
            tp = tp.__supertype__
        else:
            return tp


def is_named_struct(tp: Any) -> bool:
    return isinstance(tp, type) and (
        dataclasses.is_dataclass(tp) or issubclass(tp, BaseModel)
    )


def is_anonymous_struct(tp: Any) -> bool:
    return typing.is_typeddict(tp)


def is_sequence_type(tp: Any) -> bool:
    origin = get_origin(tp) or tp
    return origin in _SEQUENCE_ORIGINS or origin is tuple


def is_mapping_type(tp: Any) -> bool:
    origin = get_origin(tp) or tp
    return origin in _MAPPING_ORIGINS


def element_type(tp: Any) -> Any:
    """Item type of a sequence type, ``Any`` when unparameterized."""
    args = [arg for arg in get_args(tp) if arg is not Ellipsis]
    return args[0] if args else Any


def mapping_types(tp: Any) -> tuple[Any, Any]:
    args = get_args(tp)
    if len(args) == 2:
        return args[0], args[1]
    return str, Any


def type_name(tp: Any) -> str:
    """Component-style name of a type; anonymous composites get synthesized names.

    ``User`` -> 'User', ``list[User]`` -> 'UserArray', ``dict[str, User]`` -> 'UserMap'
    """
    tp = unwrap_type(tp)
    if tp is Any:
        return "Any"
    if isinstance(tp, typing.NewType):
        return tp.__name__
    if get_origin(tp) is not None:
        if is_sequence_type(tp):
            return f"{type_name(element_type(tp))}Array"
        if is_mapping_type(tp):
            return f"{type_name(mapping_types(tp)[1])}Map"
        if get_origin(tp) is Literal:
            return "Literal"
    if isinstance(tp, type):
        return tp.__name__
    return repr(tp)


# === Struct fields ===


@dataclass
class StructField:
    name: str
    annotation: Any
    tags: Tags
    excluded: bool = False
    # TypedDict keys declared NotRequired or under total=False.
    optional_key: bool = False


def _tags_in_annotation(annotation: Any) -> Tags:
    """Collect ``Tags`` from ``Annotated`` metadata, looking through ``Optional``."""
    tags = Tags()
    if get_origin(annotation) is Annotated:
        for meta in annotation.__metadata__:
            if isinstance(meta, Tags):
                tags = tags.merged_with(meta)
        return tags.merged_with(_tags_in_annotation(get_args(annotation)[0]))
    if get_origin(annotation) in _KEY_QUALIFIERS:
        return _tags_in_annotation(get_args(annotation)[0])
    if _is_union(annotation):
        for arg in get_args(annotation):
            tags = tags.merged_with(_tags_in_annotation(arg))
    return tags


def _pydantic_fields(model: type[BaseModel]) -> list[StructField]:
    result = []
    for name, info in model.model_fields.items():
        tags = Tags(
            json=info.serialization_alias or info.alias or "",
            description=info.description or "",
            example=str(info.examples[0]) if info.examples else "",
        )
        for meta in info.metadata:
            if isinstance(meta, Tags):
                tags = tags.merged_with(meta)
        tags = tags.merged_with(_tags_in_annotation(info.annotation))
        result.append(StructField(name, info.annotation, tags, excluded=bool(info.exclude)))
    return result


def _dataclass_fields(cls: type) -> list[StructField]:
    hints = get_type_hints(cls, include_extras=True)
    result = []
    for f in dataclasses.fields(cls):
        annotation = hints.get(f.name, Any)
        tags = Tags.from_mapping(f.metadata).merged_with(_tags_in_annotation(annotation))
        result.append(StructField(f.name, annotation, tags))
    return result


def _is_optional_key(cls: type, name: str, annotation: Any) -> bool:
    # __required_keys__ cannot see qualifiers inside string annotations.
    while get_origin(annotation) in _KEY_QUALIFIERS or get_origin(annotation) is Annotated:
        if get_origin(annotation) is typing.NotRequired:
            return True
        if get_origin(annotation) is typing.Required:
            return False
        annotation = get_args(annotation)[0]
    return name not in cls.__required_keys__


def _typeddict_fields(cls: type) -> list[StructField]:
    hints = get_type_hints(cls, include_extras=True)
    return [
        StructField(
            name,
            annotation,
            _tags_in_annotation(annotation),
            optional_key=_is_optional_key(cls, name, annotation),
        )
        for name, annotation in hints.items()
    ]


def struct_fields(tp: type) -> list[StructField]:
    """Declared fields of a struct-like class, in declaration order."""
    if isinstance(tp, type) and issubclass(tp, BaseModel):
        return _pydantic_fields(tp)
    if dataclasses.is_dataclass(tp):
        return _dataclass_fields(tp)
    if is_anonymous_struct(tp):
        return _typeddict_fields(tp)
    raise UnsupportedKind(tp, "not a struct")


# === Parser ===


class TypeParser:
    """Converts Python types to schemas.

    ``cache`` holds finished results, ``components`` the named structs emitted so far and
    ``parsing`` the types currently being traversed, so cyclic graphs resolve to forward
    ``$ref``s instead of recursing forever.
    """

    def __init__(self, tag_parser: TagParser | None = None):
        self.tag_parser = tag_parser or TagParser()
        self._cache: dict[Any, SchemaRef] = {}
        self._components: dict[str, SchemaRef] = {}
        self._parsing: set[Any] = set()

    def get_components(self) -> dict[str, SchemaRef]:
        return self._components

    def reset(self) -> None:
        self._cache = {}
        self._components = {}
        self._parsing = set()

    def parse_type(self, tp: Any) -> SchemaRef:
        tp = unwrap_type(tp)

        if tp in self._cache:
            return self._cache[tp].clone()

        if tp in self._parsing:
            if not is_named_struct(tp):
                raise UnsupportedKind(tp, "recursive anonymous shape")
            logger.debug("Cycle detected at %s, emitting forward reference", type_name(tp))
            return SchemaRef.to_component(type_name(tp))

        self._parsing.add(tp)
        try:
            schema_ref = self._dispatch(tp)
        finally:
            self._parsing.discard(tp)

        self._cache[tp] = schema_ref
        return schema_ref.clone()

    def _dispatch(self, tp: Any) -> SchemaRef:
        if tp in INTEGER_WIDTHS:
            bits, signed = INTEGER_WIDTHS[tp]
            return SchemaRef.inline(_integer_schema(bits, signed))
        if tp in FLOAT_WIDTHS:
            return SchemaRef.inline(_float_schema(FLOAT_WIDTHS[tp]))
        if tp is Any or tp is object:
            return SchemaRef.inline(Schema(type="object"))

        origin = get_origin(tp)
        if origin is Literal:
            return SchemaRef.inline(_enum_schema(list(get_args(tp))))
        if origin is not None or tp in (list, dict, set, frozenset, tuple):
            if is_mapping_type(tp):
                return self._parse_mapping(tp)
            if origin is tuple or tp is tuple:
                return self._parse_tuple(tp)
            if is_sequence_type(tp):
                return self._parse_sequence(element_type(tp))
            raise UnsupportedKind(tp)

        if not isinstance(tp, type):
            raise UnsupportedKind(tp)

        if issubclass(tp, enum.Enum):
            return SchemaRef.inline(_enum_schema([member.value for member in tp]))
        if is_anonymous_struct(tp):
            return SchemaRef.inline(self._parse_fields(tp))
        if is_named_struct(tp):
            return self._parse_struct(tp)

        primitive = _primitive_schema(tp)
        if primitive is None:
            raise UnsupportedKind(tp)
        return SchemaRef.inline(primitive)

    def _parse_struct(self, tp: type) -> SchemaRef:
        name = type_name(tp)
        if name in self._components:
            return SchemaRef.to_component(name)

        # Registered before the fields are walked so self references land on this entry.
        schema = Schema(type="object", properties={})
        self._components[name] = SchemaRef.inline(schema)
        self._parse_fields(tp, into=schema)
        return SchemaRef.to_component(name)

    def _parse_fields(self, tp: type, into: Schema | None = None) -> Schema:
        schema = into if into is not None else Schema(type="object", properties={})
        required: list[str] = []

        for field in struct_fields(tp):
            if field.name.startswith("_") or field.excluded:
                continue
            json_tag = field.tags.get("json")
            if json_tag == SKIP_FIELD:
                continue

            field_name, optional = self.tag_parser.parse_name_tag(json_tag)
            if not field_name:
                field_name = field.name.lower()

            if field.tags.embed:
                self._promote_embedded(schema, required, field)
                continue

            field_ref = self.parse_type(field.annotation)
            request_tag = field.tags.get("binding")
            response_tag = field.tags.get("validate")
            if field_ref.value is not None:
                # Constraints can only live on inline schemas, never on a shared $ref.
                self.tag_parser.apply_validation_tags(field_ref.value, request_tag, response_tag)
                self.tag_parser.apply_common_tags(field_ref.value, field.tags)

            if not field.optional_key and self.tag_parser.is_required(
                request_tag, response_tag, optional
            ):
                required.append(field_name)
            schema.properties[field_name] = field_ref

        schema.required = required or None
        return schema

    def _promote_embedded(self, schema: Schema, required: list[str], field: StructField) -> None:
        tp = unwrap_type(field.annotation)
        if is_named_struct(tp):
            # Flattened into the parent; the embedded struct is not a component of its own.
            if tp in self._parsing:
                raise UnsupportedKind(tp, "recursive embedding")
            self._parsing.add(tp)
            try:
                embedded = self._parse_fields(tp)
            finally:
                self._parsing.discard(tp)
        else:
            embedded = self.parse_type(tp).value

        if embedded is None or not embedded.properties:
            return
        for name, prop in embedded.properties.items():
            schema.properties[name] = prop.clone()
        required.extend(embedded.required or [])

    def _parse_sequence(self, item_type: Any, length: int | None = None) -> SchemaRef:
        schema = Schema(type="array", items=self.parse_type(item_type))
        if length is not None:
            schema.min_items = length
            schema.max_items = length
        return SchemaRef.inline(schema)

    def _parse_tuple(self, tp: Any) -> SchemaRef:
        args = get_args(tp)
        if not args:
            return self._parse_sequence(Any)
        if len(args) == 2 and args[1] is Ellipsis:
            return self._parse_sequence(args[0])
        if len(set(args)) != 1:
            raise UnsupportedKind(tp, "heterogeneous tuple")
        return self._parse_sequence(args[0], length=len(args))

    def _parse_mapping(self, tp: Any) -> SchemaRef:
        key_type, value_type = mapping_types(tp)
        key_type = unwrap_type(key_type)
        if not (isinstance(key_type, type) and issubclass(key_type, str)):
            raise UnsupportedMapKey(tp, key_type)

        if unwrap_type(value_type) in (Any, object):
            additional: bool | SchemaRef = True
        else:
            additional = self.parse_type(value_type)
        return SchemaRef.inline(Schema(type="object", additional_properties=additional))


# === Primitive schemas ===


def _integer_schema(bits: int = 64, signed: bool = True) -> Schema:
    if not signed:
        return Schema(type="integer", format="int64", minimum=0)
    return Schema(type="integer", format="int32" if bits <= 32 else "int64")


def _float_schema(bits: int = 64) -> Schema:
    return Schema(type="number", format="float" if bits <= 32 else "double")


def _primitive_schema(tp: type) -> Schema | None:
    # bool before int and datetime before date: both are subclasses.
    if issubclass(tp, bool):
        return Schema(type="boolean")
    if issubclass(tp, int):
        return _integer_schema()
    if issubclass(tp, float):
        return _float_schema()
    if issubclass(tp, decimal.Decimal):
        return Schema(type="number")
    if issubclass(tp, str):
        return Schema(type="string")
    if issubclass(tp, (bytes, bytearray)):
        return Schema(type="string", format="byte")
    if issubclass(tp, datetime.datetime):
        return Schema(type="string", format="date-time")
    if issubclass(tp, datetime.date):
        return Schema(type="string", format="date")
    if issubclass(tp, datetime.time):
        return Schema(type="string", format="time")
    if issubclass(tp, uuid.UUID):
        return Schema(type="string", format="uuid")
    return None


def _enum_schema(values: list[Any]) -> Schema:
    if values and all(isinstance(v, str) for v in values):
        kind = "string"
    elif values and all(isinstance(v, bool) for v in values):
        kind = "boolean"
    elif values and all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        kind = "integer"
    elif values and all(isinstance(v, (int, float)) for v in values):
        kind = "number"
    else:
        kind = None
    return Schema(type=kind, enum=values)
