from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter

from epoch.operations import FieldOperation, RequestOperation, ResponseOperation
from epoch.type_parser import unwrap_type
from epoch.versions import Version

_request_ops_adapter = TypeAdapter(list[RequestOperation])
_response_ops_adapter = TypeAdapter(list[ResponseOperation])


@dataclass
class VersionChange:
    """Field operations converting between two adjacent versions.

    Attached to the newer version (``to_version``). Operation lists are keyed by the
    type they apply to; both plain operation objects and their dict form are accepted:

        VersionChange(
            from_version=v1,
            to_version=v2,
            response_operations={UserResponse: [RemoveField(name="email")]},
        )
    """

    from_version: Version
    to_version: Version
    description: str = ""
    request_operations: dict[Any, list[FieldOperation]] = field(default_factory=dict)
    response_operations: dict[Any, list[FieldOperation]] = field(default_factory=dict)
    hidden_from_changelog: bool = False

    def __post_init__(self) -> None:
        if not self.description:
            self.description = f"Migration from {self.from_version} to {self.to_version}"
        self.request_operations = {
            unwrap_type(tp): _request_ops_adapter.validate_python(ops)
            for tp, ops in self.request_operations.items()
        }
        self.response_operations = {
            unwrap_type(tp): _response_ops_adapter.validate_python(ops)
            for tp, ops in self.response_operations.items()
        }

    def request_operations_for(self, tp: Any) -> list[FieldOperation] | None:
        return self.request_operations.get(unwrap_type(tp))

    def response_operations_for(self, tp: Any) -> list[FieldOperation] | None:
        return self.response_operations.get(unwrap_type(tp))

    def affected_types(self) -> set[Any]:
        return set(self.request_operations) | set(self.response_operations)
