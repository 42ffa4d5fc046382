"""Per-version schema documents.

For every version the generator clones the base document and rewrites the component
schemas of the registered types:

1. nested structs reachable from the registered types become shared components,
   transformed in both directions since requests and responses may both embed them;
2. registered types already present in the base document are transformed in place under
   the same name, so authored metadata and endpoint references survive; missing ones are
   generated and written under a versioned name;
3. inline objects matching a component's property names are replaced by a ``$ref``.

Schemas of types that are not registered pass through untouched.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Literal, get_args, get_origin

from pydantic import ValidationError

from epoch.config import SchemaDirection, SchemaGeneratorConfig
from epoch.schema import (
    AnyJsonDict,
    Schema,
    SchemaError,
    SchemaRef,
    component_name_from_ref,
    iter_refs,
    ref_for,
)
from epoch.tags import SKIP_FIELD
from epoch.transformer import VersionTransformer
from epoch.type_parser import (
    StructField,
    TypeParser,
    element_type,
    is_anonymous_struct,
    is_mapping_type,
    is_named_struct,
    is_sequence_type,
    mapping_types,
    struct_fields,
    type_name,
    unwrap_type,
)
from epoch.versions import Version

logger = logging.getLogger(__name__)


# === Exceptions ===


class UnresolvedComponent(SchemaError):
    """A generated schema references a component that does not exist in the document."""

    def __init__(self, schema_name: str, ref: str):
        self.schema_name = schema_name
        self.ref = ref
        super().__init__(f"schema {schema_name!r} references unknown component {ref!r}")


class SchemaGenerationError(SchemaError):
    """Generation of one type failed; the whole version is aborted."""

    def __init__(self, type_name: str, version: str, error: Exception):
        self.type_name = type_name
        self.version = version
        super().__init__(
            f"failed to generate schema for {type_name} at version {version}: {error}"
        )


# === Generator ===


class SchemaGenerator:
    def __init__(self, config: SchemaGeneratorConfig):
        self.config = config
        self.type_parser = TypeParser()
        self.transformer = VersionTransformer(
            config.version_bundle,
            include_migration_metadata=config.include_migration_metadata,
        )
        # version -> (type, direction) -> transformed schema
        self._schema_cache: dict[str, dict[tuple[Any, SchemaDirection], Schema]] = {}

    def generate_versioned_specs(self, base_document: AnyJsonDict) -> dict[str, AnyJsonDict]:
        """One document per version keyed by its display string, head first."""
        return {
            str(version): self.generate_spec_for_version(base_document, version)
            for version in self.config.version_bundle.all_versions()
        }

    def generate_spec_for_version(
        self, base_document: AnyJsonDict, version: Version | str
    ) -> AnyJsonDict:
        if isinstance(version, str):
            version = self.config.version_bundle.parse_version(version)

        document = _clone_document(base_document)
        schemas: dict[str, Any] = document["components"]["schemas"]
        base_schemas = _base_schemas(base_document)

        roots = []
        for tp in self.config.type_registry.root_types():
            if is_named_struct(tp):
                roots.append(tp)
            else:
                logger.debug("Skipping registered type %s: not a named struct", type_name(tp))

        managed: dict[str, Schema] = {}
        # bare component name -> name it was written under
        renamed: dict[str, str] = {}

        nested = self.discover_nested_types(roots)
        self._build_nested_components(nested, base_schemas, version, managed, renamed)
        nested_names = {type_name(tp) for tp in nested}

        for tp in roots:
            self._guarded(
                tp, version, self._process_root, tp, base_schemas, version, managed, nested_names
            )

        for schema in managed.values():
            _rename_refs(schema, renamed)

        known = {*schemas, *managed}
        self._substitute_component_refs(managed, schemas)
        for name, schema in managed.items():
            for ref in iter_refs(SchemaRef.inline(schema)):
                if component_name_from_ref(ref) not in known:
                    error = UnresolvedComponent(name, ref)
                    raise SchemaGenerationError(name, str(version), error) from error

        for name, schema in managed.items():
            schemas[name] = schema.to_json()

        logger.info(
            "Generated schemas for version %s: %d managed, %d total",
            version,
            len(managed),
            len(schemas),
        )
        return document

    def get_schema_for_type(
        self, tp: Any, version: Version, direction: SchemaDirection
    ) -> Schema:
        """HEAD schema of ``tp`` parsed from scratch and transformed to ``version``."""
        tp = unwrap_type(tp)
        cache = self._schema_cache.setdefault(str(version), {})
        if (tp, direction) in cache:
            return cache[(tp, direction)].clone()

        schema = self._parse_head_schema(tp)
        transformed = self.transformer.transform_schema_for_version(schema, tp, version, direction)
        cache[(tp, direction)] = transformed
        return transformed.clone()

    def get_version_suffix(self, version: Version) -> str:
        """'2024-01-01' -> 'V20240101', 'v1.2.0' -> 'V120'; empty for head."""
        if version.is_head:
            return ""
        stripped = str(version).replace("-", "").replace(".", "").replace("v", "")
        return f"{self.config.component_name_prefix}V{stripped}"

    def get_direction_for_type(self, tp: Any) -> SchemaDirection:
        # A type used both ways is documented as a request: clients send it.
        if unwrap_type(tp) in self.config.type_registry.request_types():
            return SchemaDirection.REQUEST
        return SchemaDirection.RESPONSE

    def discover_nested_types(self, roots: list[Any]) -> list[Any]:
        """Named structs referenced by the roots' fields, sequences and mapping values.

        Declared nested types of the registry are always included. Roots themselves are
        only included when a field references them.
        """
        nested: list[Any] = []
        visited: set[Any] = set()

        def visit(tp: Any, as_component: bool) -> None:
            for candidate in _referenced_types(tp):
                if is_named_struct(candidate) and as_component and candidate not in nested:
                    nested.append(candidate)
                if candidate in visited:
                    continue
                visited.add(candidate)
                if is_named_struct(candidate) or is_anonymous_struct(candidate):
                    for field in struct_fields(candidate):
                        if _is_serialized(field):
                            visit(field.annotation, as_component=not field.tags.embed)

        for tp in [*self.config.type_registry.declared_nested_types(), *roots]:
            visit(tp, as_component=False)
        for tp in self.config.type_registry.declared_nested_types():
            if is_named_struct(tp) and tp not in nested:
                nested.append(tp)
        return nested

    # === Passes ===

    def _build_nested_components(
        self,
        nested: list[Any],
        base_schemas: dict[str, Any],
        version: Version,
        managed: dict[str, Schema],
        renamed: dict[str, str],
    ) -> None:
        pending: list[tuple[Any, str]] = []
        for tp in nested:
            name = type_name(tp)
            mapped = self.config.output_name_mapper(name)
            if _is_inline_schema(base_schemas.get(mapped)):
                authored = copy.deepcopy(base_schemas[mapped])
                schema = self._guarded(tp, version, Schema.from_json, authored)
                key = mapped
                if mapped != name:
                    renamed[name] = mapped
            else:
                schema = self._guarded(tp, version, self._parse_head_schema, tp)
                key = name
            managed[key] = schema
            pending.append((tp, key))

        # All components exist now; the transforms may run in any order.
        for tp, key in pending:
            schema = managed[key]
            for direction in (SchemaDirection.REQUEST, SchemaDirection.RESPONSE):
                schema = self._guarded(
                    tp,
                    version,
                    self.transformer.transform_schema_for_version,
                    schema,
                    tp,
                    version,
                    direction,
                )
            managed[key] = schema
            logger.debug("Built nested component %s for version %s", key, version)

    def _process_root(
        self,
        tp: Any,
        base_schemas: dict[str, Any],
        version: Version,
        managed: dict[str, Schema],
        nested_names: set[str],
    ) -> None:
        name = type_name(tp)
        mapped = self.config.output_name_mapper(name)
        direction = self.get_direction_for_type(tp)

        if _is_inline_schema(base_schemas.get(mapped)):
            existing = Schema.from_json(copy.deepcopy(base_schemas[mapped]))
            managed[mapped] = self.transformer.transform_schema_for_version(
                existing, tp, version, direction
            )
            logger.debug("Transformed %s in place for version %s (%s)", mapped, version, direction)
            return

        if version.is_head or name in nested_names:
            key = name
        else:
            key = name + self.get_version_suffix(version)
        if key in managed or key in base_schemas:
            logger.debug("Schema %s already present for version %s, skipping", key, version)
            return
        managed[key] = self.get_schema_for_type(tp, version, direction)
        logger.debug("Generated %s for version %s (%s)", key, version, direction)

    def _parse_head_schema(self, tp: Any) -> Schema:
        self.type_parser.reset()
        schema_ref = self.type_parser.parse_type(tp)
        if schema_ref.ref is None:
            return schema_ref.value
        component = self.type_parser.get_components().get(schema_ref.component_name)
        if component is None or component.value is None:
            raise UnresolvedComponent(type_name(tp), schema_ref.ref)
        return component.value.clone()

    def _substitute_component_refs(
        self, managed: dict[str, Schema], schemas: dict[str, Any]
    ) -> None:
        """Replace inline objects by refs to the component with the same property names.

        Only property names are compared, so a shape matching several components is
        left inline.
        """
        candidates: dict[frozenset[str], list[str]] = {}
        for name in sorted({*schemas, *managed}):
            if name in managed:
                names = managed[name].property_names()
            else:
                names = _json_property_names(schemas[name])
            if names:
                candidates.setdefault(names, []).append(name)

        def match(schema_ref: SchemaRef, owner: str) -> str | None:
            schema = schema_ref.value
            if schema is None or not schema.is_type("object") or not schema.properties:
                return None
            found = [n for n in candidates.get(schema.property_names(), []) if n != owner]
            if len(found) != 1:
                if found:
                    logger.debug("Ambiguous inline shape in %s matches %s", owner, found)
                return None
            return found[0]

        def walk(schema: Schema, owner: str) -> None:
            for prop_name, prop in (schema.properties or {}).items():
                if (target := match(prop, owner)) is not None:
                    logger.debug("Replacing %s.%s with a ref to %s", owner, prop_name, target)
                    schema.properties[prop_name] = SchemaRef.to_component(target)
                    continue
                if prop.value is None:
                    continue
                items = prop.value.items
                if prop.value.is_type("array") and items is not None:
                    if (target := match(items, owner)) is not None:
                        logger.debug(
                            "Replacing %s.%s items with a ref to %s", owner, prop_name, target
                        )
                        prop.value.items = SchemaRef.to_component(target)
                        continue
                walk(prop.value, owner)
            if schema.items is not None and schema.items.value is not None:
                walk(schema.items.value, owner)
            additional = schema.additional_properties
            if isinstance(additional, SchemaRef) and additional.value is not None:
                walk(additional.value, owner)

        for name, schema in managed.items():
            walk(schema, name)

    def _guarded(self, tp: Any, version: Version, fn, *args):
        try:
            return fn(*args)
        except (SchemaError, ValidationError) as e:
            if isinstance(e, SchemaGenerationError):
                raise
            raise SchemaGenerationError(type_name(tp), str(version), e) from e


# === Helpers ===


def _clone_document(base_document: AnyJsonDict) -> AnyJsonDict:
    """Shallow copy of the document, deep copy of its component schemas."""
    document = dict(base_document)
    components = dict(base_document.get("components") or {})
    components["schemas"] = copy.deepcopy(components.get("schemas") or {})
    document["components"] = components
    return document


def _base_schemas(base_document: AnyJsonDict) -> dict[str, Any]:
    return (base_document.get("components") or {}).get("schemas") or {}


def _is_inline_schema(entry: Any) -> bool:
    return isinstance(entry, dict) and "$ref" not in entry


def _json_property_names(entry: Any) -> frozenset[str]:
    if not _is_inline_schema(entry):
        return frozenset()
    return frozenset(entry.get("properties") or {})


def _is_serialized(field: StructField) -> bool:
    return not (
        field.name.startswith("_") or field.excluded or field.tags.get("json") == SKIP_FIELD
    )


def _referenced_types(tp: Any):
    """Types a field annotation points at, looking through containers and unions."""
    tp = unwrap_type(tp)
    if get_origin(tp) is Literal:
        return
    if is_mapping_type(tp):
        yield from _referenced_types(mapping_types(tp)[1])
    elif is_sequence_type(tp):
        for arg in get_args(tp) or [element_type(tp)]:
            if arg is not Ellipsis:
                yield from _referenced_types(arg)
    elif get_args(tp) and not isinstance(tp, type):
        # Non-optional unions: every member may be a struct.
        for arg in get_args(tp):
            if arg is not type(None):
                yield from _referenced_types(arg)
    else:
        yield tp


def _rename_refs(schema: Schema, renamed: dict[str, str]) -> None:
    if not renamed:
        return

    def rename(schema_ref: SchemaRef) -> None:
        if schema_ref.ref is not None:
            target = renamed.get(schema_ref.component_name)
            if target is not None:
                schema_ref.ref = ref_for(target)
            return
        _rename_refs(schema_ref.value, renamed)

    for prop in (schema.properties or {}).values():
        rename(prop)
    if schema.items is not None:
        rename(schema.items)
    if isinstance(schema.additional_properties, SchemaRef):
        rename(schema.additional_properties)
