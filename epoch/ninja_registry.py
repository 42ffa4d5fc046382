"""Build a ``TypeRegistry`` from a django-ninja API.

Walks every router and operation of a ``NinjaAPI`` and records the declared body and
response types, so the schema generator knows which types are request shapes and which
are response shapes.
"""

from __future__ import annotations

from typing import Any

from ninja import NinjaAPI
from ninja.constants import NOT_SET
from ninja.operation import Operation, PathView
from pydantic import BaseModel

from epoch.registry import EndpointDefinition, TypeRegistry
from epoch.type_parser import is_named_struct, unwrap_type


def _single_field_annotation(model: type[BaseModel], preferred: str | None = None) -> Any:
    fields = model.model_fields
    if preferred is not None and preferred in fields:
        return fields[preferred].annotation
    if len(fields) == 1:
        return next(iter(fields.values())).annotation
    return None


def _extract_operation_body(operation: Operation) -> Any:
    body_model = next(
        (m for m in operation.models if m.__ninja_param_source__ == "body"), None
    )
    if body_model is None:
        return None
    # The body model wraps the declared payload type in a single field named after
    # the view parameter ("payload", "body", ...).
    body_type = _single_field_annotation(body_model)
    if body_type is None or not is_named_struct(unwrap_type(body_type)):
        return None
    return body_type


def _extract_operation_response(operation: Operation) -> Any:
    for status, model in sorted(operation.response_models.items(), key=lambda kv: str(kv[0])):
        if model in (None, NOT_SET):
            continue
        if not str(status).startswith("2"):
            continue
        return _single_field_annotation(model, preferred="response")
    return None


def _join_path(prefix: str, path: str) -> str:
    joined = "/".join(part.strip("/") for part in (prefix, path) if part.strip("/"))
    return "/" + joined


def type_registry_from_ninja_api(
    api: NinjaAPI, registry: TypeRegistry | None = None
) -> TypeRegistry:
    """Register the request and response types of every operation of ``api``."""
    registry = registry if registry is not None else TypeRegistry()
    for router_prefix, router in api._routers:
        path: PathView
        for path_str, path in router.path_operations.items():
            operation: Operation
            for operation in path.operations:
                request_type = _extract_operation_body(operation)
                response_type = _extract_operation_response(operation)
                if request_type is None and response_type is None:
                    continue
                for method in operation.methods:
                    registry.register(
                        EndpointDefinition(
                            method=method,
                            path=_join_path(router_prefix, path_str),
                            request_type=request_type,
                            response_type=response_type,
                        )
                    )
    return registry
