"""Versioned API schema generation from a HEAD data model and declared version changes.

django-ninja integration lives in ``epoch.ninja_registry`` and needs configured Django
settings, so it is not imported here.
"""

from epoch.config import SchemaDirection, SchemaGeneratorConfig
from epoch.generator import SchemaGenerationError, SchemaGenerator, UnresolvedComponent
from epoch.operations import (
    AddField,
    AddFieldWithDefault,
    Custom,
    RemoveField,
    RemoveFieldIfDefault,
    RenameField,
)
from epoch.registry import EndpointDefinition, TypeRegistry
from epoch.schema import Schema, SchemaError, SchemaRef
from epoch.tags import TagParser, Tags
from epoch.transformer import TransformFailure, VersionTransformer
from epoch.type_parser import TypeParser, UnsupportedKind, UnsupportedMapKey
from epoch.version_change import VersionChange
from epoch.versions import Version, VersionBundle, VersionBundleError, VersionNotFoundError

__all__ = [
    "AddField",
    "AddFieldWithDefault",
    "Custom",
    "EndpointDefinition",
    "RemoveField",
    "RemoveFieldIfDefault",
    "RenameField",
    "Schema",
    "SchemaDirection",
    "SchemaError",
    "SchemaGenerationError",
    "SchemaGenerator",
    "SchemaGeneratorConfig",
    "SchemaRef",
    "TagParser",
    "Tags",
    "TransformFailure",
    "TypeParser",
    "TypeRegistry",
    "UnresolvedComponent",
    "UnsupportedKind",
    "UnsupportedMapKey",
    "Version",
    "VersionBundle",
    "VersionBundleError",
    "VersionChange",
    "VersionNotFoundError",
    "VersionTransformer",
]
