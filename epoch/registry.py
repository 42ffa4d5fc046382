"""Endpoint to type associations consumed by schema generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from epoch.type_parser import (
    element_type,
    is_mapping_type,
    is_sequence_type,
    mapping_types,
    unwrap_type,
)

logger = logging.getLogger(__name__)


@dataclass
class EndpointDefinition:
    method: str
    path: str
    request_type: Any = None
    response_type: Any = None
    # field name -> item type for arrays nested in the response
    nested_arrays: dict[str, Any] = field(default_factory=dict)
    # field name -> type for objects nested in the response
    nested_objects: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.request_type = _root_type(self.request_type)
        self.response_type = _root_type(self.response_type)
        self.nested_arrays = {k: unwrap_type(v) for k, v in self.nested_arrays.items()}
        self.nested_objects = {k: unwrap_type(v) for k, v in self.nested_objects.items()}


def _root_type(tp: Any) -> Any:
    """Top-level ``list[T]`` / ``dict[str, T]`` bodies register their item type ``T``."""
    if tp is None:
        return None
    tp = unwrap_type(tp)
    while True:
        if is_mapping_type(tp):
            tp = unwrap_type(mapping_types(tp)[1])
        elif is_sequence_type(tp):
            tp = unwrap_type(element_type(tp))
        else:
            return tp


class TypeRegistry:
    """Endpoint definitions keyed by ``METHOD:path``."""

    def __init__(self, endpoints: list[EndpointDefinition] | None = None):
        self._endpoints: dict[str, EndpointDefinition] = {}
        for endpoint in endpoints or []:
            self.register(endpoint)

    @staticmethod
    def _make_key(method: str, path: str) -> str:
        return f"{method.upper()}:{path}"

    def register(self, endpoint: EndpointDefinition) -> None:
        key = self._make_key(endpoint.method, endpoint.path)
        if key in self._endpoints:
            logger.debug("Replacing endpoint definition for %s", key)
        self._endpoints[key] = endpoint

    def get(self, method: str, path: str) -> EndpointDefinition | None:
        return self._endpoints.get(self._make_key(method, path))

    def get_all(self) -> list[EndpointDefinition]:
        return list(self._endpoints.values())

    def request_types(self) -> list[Any]:
        return _unique(e.request_type for e in self._endpoints.values())

    def response_types(self) -> list[Any]:
        return _unique(e.response_type for e in self._endpoints.values())

    def root_types(self) -> list[Any]:
        """Request and response types in registration order, without duplicates."""
        return _unique([*self.request_types(), *self.response_types()])

    def declared_nested_types(self) -> list[Any]:
        nested = []
        for endpoint in self._endpoints.values():
            nested.extend(endpoint.nested_arrays.values())
            nested.extend(endpoint.nested_objects.values())
        return _unique(nested)

    def __len__(self) -> int:
        return len(self._endpoints)


def _unique(types) -> list[Any]:
    result = []
    for tp in types:
        if tp is not None and tp not in result:
            result.append(tp)
    return result
