"""Ageing HEAD schemas to older versions.

Both request and response schemas start from HEAD and walk the version chain backwards.
Response operations already describe newer -> older, so they are applied as declared.
Request operations describe older -> newer and are inverted first; operations without an
inverse (``Custom``) only matter for payloads and are skipped.
"""

from __future__ import annotations

import logging
from typing import Any

from epoch.config import SchemaDirection
from epoch.operations import (
    AddField,
    AddFieldWithDefault,
    Custom,
    FieldOperation,
    RemoveField,
    RemoveFieldIfDefault,
    RenameField,
)
from epoch.schema import Schema, SchemaError, SchemaRef
from epoch.type_parser import TypeParser, type_name
from epoch.version_change import VersionChange
from epoch.versions import Version, VersionBundle

logger = logging.getLogger(__name__)

MIGRATIONS_EXTENSION = "x-epoch-migrations"


class TransformFailure(SchemaError):
    """A version change operation could not be applied to a schema."""


class VersionTransformer:
    def __init__(
        self,
        version_bundle: VersionBundle,
        type_parser: TypeParser | None = None,
        include_migration_metadata: bool = False,
    ):
        self.version_bundle = version_bundle
        # Only used to synthesize schemas for composite default values.
        self.type_parser = type_parser or TypeParser()
        self.include_migration_metadata = include_migration_metadata

    def transform_schema_for_version(
        self,
        schema: Schema,
        target_type: Any,
        target_version: Version,
        direction: SchemaDirection,
    ) -> Schema:
        """Return a copy of ``schema`` as ``target_type`` looked at ``target_version``."""
        schema = schema.clone()
        if target_version.is_head:
            return schema

        for version, change in self._changes_for(target_type, target_version, direction):
            applied = self._apply_change(schema, change, target_type, direction)
            if applied and self.include_migration_metadata:
                _record_migration(schema, change, direction)
            logger.debug(
                "Applied %d %s operation(s) of %s for %s",
                applied,
                direction,
                version,
                type_name(target_type),
            )
        return schema

    def _changes_for(
        self, target_type: Any, target_version: Version, direction: SchemaDirection
    ) -> list[tuple[Version, VersionChange]]:
        """Changes between ``target_version`` and HEAD touching the type, newest first.

        A change is attached to its newer version, so the changes leading away from the
        target towards HEAD live on the versions strictly newer than the target.
        """
        changes = []
        for version in self.version_bundle.newer_than(target_version):
            for change in version.changes:
                if _operations(change, target_type, direction):
                    changes.append((version, change))
        return changes

    def _apply_change(
        self,
        schema: Schema,
        change: VersionChange,
        target_type: Any,
        direction: SchemaDirection,
    ) -> int:
        applied = 0
        for op in _operations(change, target_type, direction):
            if direction is SchemaDirection.REQUEST:
                inverted = op.inverse()
                if inverted is None:
                    logger.debug("Skipping non-invertible %s operation for schema", op.op)
                    continue
                op = inverted
            try:
                self.apply_operation(schema, op)
            except TransformFailure as e:
                raise TransformFailure(
                    f"failed to apply change from {change.from_version} to "
                    f"{change.to_version} ({change.description}): {e}"
                ) from e
            applied += 1
        return applied

    def apply_operation(self, schema: Schema, op: FieldOperation) -> None:
        match op:
            case AddField(name=name, default=default) | AddFieldWithDefault(
                name=name, default=default
            ):
                add_field_to_schema(schema, name, self.schema_for_value(default))
            case RemoveField(name=name) | RemoveFieldIfDefault(name=name):
                remove_field_from_schema(schema, name)
            case RenameField(from_name=from_name, to_name=to_name):
                rename_field_in_schema(schema, from_name, to_name)
            case Custom():
                pass
            case _:
                raise TransformFailure(f"unknown operation {op!r}")

    def schema_for_value(self, value: Any) -> SchemaRef:
        """Schema describing a literal default value introduced by a migration."""
        if value is None:
            return SchemaRef.inline(Schema(type="object"))
        if isinstance(value, bool):
            return SchemaRef.inline(Schema(type="boolean"))
        if isinstance(value, int):
            return SchemaRef.inline(Schema(type="integer", format="int64"))
        if isinstance(value, float):
            return SchemaRef.inline(Schema(type="number", format="double"))
        if isinstance(value, str):
            return SchemaRef.inline(Schema(type="string"))

        self.type_parser.reset()
        try:
            schema_ref = self.type_parser.parse_type(type(value))
        except SchemaError as e:
            raise TransformFailure(
                f"cannot describe default value of type {type(value).__name__}: {e}"
            ) from e
        if schema_ref.ref is not None:
            # Composite defaults are inlined: the component may not exist in the document.
            component = self.type_parser.get_components()[schema_ref.component_name]
            return component.clone()
        return schema_ref


def _operations(
    change: VersionChange, target_type: Any, direction: SchemaDirection
) -> list[FieldOperation]:
    if direction is SchemaDirection.REQUEST:
        return change.request_operations_for(target_type) or []
    return change.response_operations_for(target_type) or []


def _record_migration(schema: Schema, change: VersionChange, direction: SchemaDirection) -> None:
    entries = list(schema.get_extension(MIGRATIONS_EXTENSION) or [])
    entries.append(
        {
            "from": str(change.from_version),
            "to": str(change.to_version),
            "description": change.description,
            "direction": str(direction),
        }
    )
    schema.set_extension(MIGRATIONS_EXTENSION, entries)


# === Field operations on schemas ===


def add_field_to_schema(
    schema: Schema, field_name: str, field_schema: SchemaRef, required: bool = False
) -> None:
    if schema.properties is None:
        schema.properties = {}
    schema.properties[field_name] = field_schema
    if required:
        schema.required = [*(schema.required or []), field_name]


def remove_field_from_schema(schema: Schema, field_name: str) -> None:
    if schema.properties is not None:
        schema.properties.pop(field_name, None)
    if schema.required:
        schema.required = [name for name in schema.required if name != field_name] or None


def rename_field_in_schema(schema: Schema, from_name: str, to_name: str) -> None:
    if not schema.properties or from_name not in schema.properties:
        return
    schema.properties[to_name] = schema.properties.pop(from_name)
    if schema.required:
        schema.required = [to_name if name == from_name else name for name in schema.required]
