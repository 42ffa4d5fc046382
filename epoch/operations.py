"""Field operations declared by version changes.

Operations are authored once, in their natural direction:

- request operations migrate an older request to the next newer shape;
- response operations migrate a newer response to the previous older shape.

Schema generation always walks from HEAD backwards, so request operations are
inverted before they are applied (see ``FieldOperation.inverse``).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class FieldOperation(BaseModel):
    op: str

    def inverse(self) -> FieldOperation | None:
        """The operation undoing this one on a schema, or None if it has no inverse."""
        return None


class AddField(FieldOperation):
    op: Literal["add_field"] = "add_field"
    name: str
    default: Any = None

    def inverse(self) -> FieldOperation:
        return RemoveField(name=self.name)


class AddFieldWithDefault(FieldOperation):
    """Request only: fill in ``default`` when an older client leaves the field out."""

    op: Literal["add_field_with_default"] = "add_field_with_default"
    name: str
    default: Any = None

    def inverse(self) -> FieldOperation:
        return RemoveField(name=self.name)


class RemoveField(FieldOperation):
    op: Literal["remove_field"] = "remove_field"
    name: str

    def inverse(self) -> FieldOperation:
        # The default is a runtime concern; schemas only need the field back.
        return AddField(name=self.name, default=None)


class RemoveFieldIfDefault(FieldOperation):
    """Response only: drop the field when it still holds ``default``.

    The condition cannot be expressed statically, so schemas treat it as a removal.
    """

    op: Literal["remove_field_if_default"] = "remove_field_if_default"
    name: str
    default: Any = None

    def inverse(self) -> FieldOperation:
        return AddField(name=self.name, default=self.default)


class RenameField(FieldOperation):
    """``from_name`` is the field's name before this operation runs, ``to_name`` after."""

    op: Literal["rename_field"] = "rename_field"
    from_name: str
    to_name: str

    def inverse(self) -> FieldOperation:
        return RenameField(from_name=self.to_name, to_name=self.from_name)


class Custom(FieldOperation):
    """Arbitrary payload transformation. Invisible to schemas and not invertible."""

    op: Literal["custom"] = "custom"
    fn: Callable[[Any], Any] | None = Field(default=None, exclude=True)


type RequestOperation = Annotated[
    AddField | AddFieldWithDefault | RemoveField | RenameField | Custom,
    Field(discriminator="op"),
]
type ResponseOperation = Annotated[
    AddField | RemoveField | RemoveFieldIfDefault | RenameField | Custom,
    Field(discriminator="op"),
]
