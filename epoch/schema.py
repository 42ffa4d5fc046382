"""Schema graph nodes.

A ``Schema`` describes a shape; a ``SchemaRef`` is either an inline ``Schema`` or a
``$ref`` to a named component. Both convert to and from the OpenAPI-style dicts found
in base documents, keeping any keys this package does not model (titles, ``x-``
extensions, ``anyOf`` and friends) verbatim.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator

type AnyJson = dict[str, AnyJson] | list[AnyJson] | str | int | float | bool | None
type AnyJsonDict = dict[str, AnyJson]

# Same template django-ninja uses for its component refs.
REF_TEMPLATE = "#/components/schemas/{model}"
REF_PREFIX = REF_TEMPLATE.split("{", 1)[0]

_NULLABLE_LITERALS = ("default", "example")


class SchemaError(Exception):
    """Base exception for schema generation errors."""


def ref_for(component_name: str) -> str:
    """'User' -> '#/components/schemas/User'"""
    return REF_TEMPLATE.format(model=component_name)


def component_name_from_ref(ref: str) -> str:
    """'#/components/schemas/User' -> 'User'"""
    return ref.removeprefix(REF_PREFIX)


class Schema(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str | list[str] | None = None
    format: str | None = None
    description: str | None = None
    example: Any = None
    enum: list[Any] | None = None
    default: Any = None
    pattern: str | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: bool | int | float | None = Field(None, alias="exclusiveMinimum")
    exclusive_maximum: bool | int | float | None = Field(None, alias="exclusiveMaximum")
    min_length: int | None = Field(None, alias="minLength")
    max_length: int | None = Field(None, alias="maxLength")
    min_items: int | None = Field(None, alias="minItems")
    max_items: int | None = Field(None, alias="maxItems")
    properties: dict[str, SchemaRef] | None = None
    required: list[str] | None = None
    items: SchemaRef | None = None
    additional_properties: bool | SchemaRef | None = Field(None, alias="additionalProperties")

    def is_type(self, kind: str) -> bool:
        if isinstance(self.type, list):
            return kind in self.type
        return self.type == kind

    @property
    def is_numeric(self) -> bool:
        return self.is_type("integer") or self.is_type("number")

    def clone(self) -> Schema:
        return self.model_copy(deep=True)

    def set_extension(self, key: str, value: AnyJson) -> None:
        """Set a vendor extension (``x-...``) key, kept alongside the modelled fields."""
        if self.__pydantic_extra__ is None:
            self.__pydantic_extra__ = {}
        self.__pydantic_extra__[key] = value

    def get_extension(self, key: str) -> AnyJson:
        return (self.__pydantic_extra__ or {}).get(key)

    def property_names(self) -> frozenset[str]:
        return frozenset(self.properties or {})

    @model_serializer(mode="wrap")
    def _keep_null_literals(self, handler):
        data = handler(self)
        # An authored `"default": null` is a value, not an absent key.
        for name in _NULLABLE_LITERALS:
            if name in self.model_fields_set and getattr(self, name) is None:
                data[name] = None
        return data

    def to_json(self) -> AnyJsonDict:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, data: AnyJsonDict) -> Schema:
        return cls.model_validate(data)


class SchemaRef(BaseModel):
    """Either an inline schema or a reference to a component, never both.

    Keys authored next to a ``$ref`` (``description``, ``readOnly`` ...) are kept as extras
    and written back after it.
    """

    model_config = ConfigDict(extra="allow")

    ref: str | None = None
    value: Schema | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_openapi(cls, data: Any) -> Any:
        # Raw OpenAPI dicts are either {"$ref": ...} or a schema object.
        if not isinstance(data, dict):
            return data
        if "$ref" in data:
            siblings = {key: value for key, value in data.items() if key != "$ref"}
            return {**siblings, "ref": data["$ref"]}
        if "ref" in data or "value" in data:
            return data
        return {"value": data}

    @model_validator(mode="after")
    def _check_exclusive(self) -> SchemaRef:
        if (self.ref is None) == (self.value is None):
            raise ValueError("SchemaRef must hold exactly one of 'ref' or 'value'")
        if self.value is not None and self.__pydantic_extra__:
            raise ValueError("sibling keys are only kept next to a 'ref'")
        return self

    @model_serializer(mode="wrap")
    def _to_openapi(self, handler):
        if self.ref is not None:
            return {"$ref": self.ref, **(self.__pydantic_extra__ or {})}
        return handler(self)["value"]

    @classmethod
    def inline(cls, schema: Schema) -> SchemaRef:
        return cls(value=schema)

    @classmethod
    def to_component(cls, component_name: str) -> SchemaRef:
        return cls(ref=ref_for(component_name))

    @property
    def component_name(self) -> str | None:
        if self.ref is None:
            return None
        return component_name_from_ref(self.ref)

    def clone(self) -> SchemaRef:
        return self.model_copy(deep=True)

    def to_json(self) -> AnyJsonDict:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, data: AnyJsonDict) -> SchemaRef:
        return cls.model_validate(data)


Schema.model_rebuild()
SchemaRef.model_rebuild()


def iter_refs(schema_ref: SchemaRef):
    """Yield every ``$ref`` string reachable from ``schema_ref`` through modelled keys."""
    if schema_ref.ref is not None:
        yield schema_ref.ref
        return
    schema = schema_ref.value
    for child in (schema.properties or {}).values():
        yield from iter_refs(child)
    if schema.items is not None:
        yield from iter_refs(schema.items)
    if isinstance(schema.additional_properties, SchemaRef):
        yield from iter_refs(schema.additional_properties)
