from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from epoch.registry import TypeRegistry
from epoch.versions import VersionBundle


class SchemaDirection(StrEnum):
    # Client -> HEAD: request shapes, built by inverting request operations.
    REQUEST = "request"
    # HEAD -> Client: response shapes, built by applying response operations.
    RESPONSE = "response"


def _identity(name: str) -> str:
    return name


@dataclass
class SchemaGeneratorConfig:
    """Configuration for the schema generator.

    ``output_name_mapper`` maps a type name to the schema name used in the base
    document, e.g. ``lambda name: "api." + name``.
    ``component_name_prefix`` is placed before the version marker of generated names:
    ``User`` + ``Acme`` -> ``UserAcmeV20240101``.
    ``include_migration_metadata`` records applied changes on each transformed schema
    under ``x-epoch-migrations``.
    """

    version_bundle: VersionBundle
    type_registry: TypeRegistry = field(default_factory=TypeRegistry)
    output_name_mapper: Callable[[str], str] = _identity
    component_name_prefix: str = ""
    include_migration_metadata: bool = False

    @classmethod
    def from_django_settings(
        cls,
        version_bundle: VersionBundle,
        type_registry: TypeRegistry | None = None,
    ) -> "SchemaGeneratorConfig":
        """Load options from Django settings.EPOCH_SCHEMA.

        EPOCH_SCHEMA = {
            "component_name_prefix": "Acme",
            "include_migration_metadata": True,
            "output_name_mapper": "myapp.openapi.schema_name",
        }
        """
        from django.conf import settings
        from django.utils.module_loading import import_string

        epoch_settings = getattr(settings, "EPOCH_SCHEMA", {})
        mapper = epoch_settings.get("output_name_mapper", _identity)
        if isinstance(mapper, str):
            mapper = import_string(mapper)
        return cls(
            version_bundle=version_bundle,
            type_registry=type_registry if type_registry is not None else TypeRegistry(),
            output_name_mapper=mapper,
            component_name_prefix=epoch_settings.get(
                "component_name_prefix", cls.component_name_prefix
            ),
            include_migration_metadata=epoch_settings.get(
                "include_migration_metadata", cls.include_migration_metadata
            ),
        )
