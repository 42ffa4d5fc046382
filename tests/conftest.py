"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Any

import django
import pytest
from django.conf import settings

# django-ninja reads Django settings at import time.
if not settings.configured:
    settings.configure(
        DEBUG=True,
        SECRET_KEY="epoch-tests",
        INSTALLED_APPS=[],
        USE_TZ=True,
    )
    django.setup()

from epoch.config import SchemaGeneratorConfig  # noqa: E402
from epoch.generator import SchemaGenerator  # noqa: E402
from epoch.registry import EndpointDefinition, TypeRegistry  # noqa: E402
from epoch.version_change import VersionChange  # noqa: E402
from epoch.versions import Version, VersionBundle  # noqa: E402


def make_change(
    from_version: str,
    to_version: str,
    request_operations: dict[Any, list] | None = None,
    response_operations: dict[Any, list] | None = None,
    description: str = "",
) -> VersionChange:
    """Helper to create a version change between two version strings."""
    return VersionChange(
        from_version=Version.parse(from_version),
        to_version=Version.parse(to_version),
        description=description,
        request_operations=request_operations or {},
        response_operations=response_operations or {},
    )


@pytest.fixture
def bundle_factory():
    """Factory for creating VersionBundle instances from version strings."""

    def _make_bundle(*versions: str, changes: list[VersionChange] | None = None) -> VersionBundle:
        return VersionBundle([Version.parse(v) for v in versions], changes=changes or [])

    return _make_bundle


@pytest.fixture
def registry_factory():
    """Factory for creating a TypeRegistry from (method, path, request, response) tuples."""

    def _make_registry(*endpoints: tuple[str, str, Any, Any]) -> TypeRegistry:
        return TypeRegistry(
            [
                EndpointDefinition(
                    method=method, path=path, request_type=request, response_type=response
                )
                for method, path, request, response in endpoints
            ]
        )

    return _make_registry


@pytest.fixture
def generator_factory():
    """Factory for creating a SchemaGenerator with config overrides."""

    def _make_generator(
        bundle: VersionBundle, registry: TypeRegistry, **config: Any
    ) -> SchemaGenerator:
        return SchemaGenerator(
            SchemaGeneratorConfig(version_bundle=bundle, type_registry=registry, **config)
        )

    return _make_generator


def make_document(schemas: dict[str, Any]) -> dict[str, Any]:
    """Helper to create a minimal OpenAPI base document."""
    return {
        "openapi": "3.1.0",
        "info": {"title": "Test API", "version": "head"},
        "paths": {"/users/{user_id}": {"get": {"operationId": "get_user"}}},
        "components": {"schemas": schemas},
    }
