"""Field annotation tags.

Fields carry their serialization and validation metadata as short tag strings, the same
vocabulary gin/validator style APIs use:

    class CreateUserRequest(BaseModel):
        full_name: Annotated[str, Tags(json="full_name", binding="required,max=100")]
        email: Annotated[str, Tags(json="email,omitempty", binding="email")]

``binding`` holds request-side validators, ``validate`` response-side validators.
Dataclasses may equally put the same keys in ``field(metadata={...})``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields

from epoch.schema import Schema

SKIP_FIELD = "-"

_NUMERIC_PATTERN = "^[0-9]+$"
_ALPHA_PATTERN = "^[a-zA-Z]+$"
_ALPHANUM_PATTERN = "^[a-zA-Z0-9]+$"

_KEYWORD_FORMATS = {
    "email": "email",
    "url": "uri",
    "uuid": "uuid",
    "base64": "byte",
}

_KEYWORD_PATTERNS = {
    "numeric": _NUMERIC_PATTERN,
    "alpha": _ALPHA_PATTERN,
    "alphanum": _ALPHANUM_PATTERN,
}


@dataclass(frozen=True)
class Tags:
    """Tag strings attached to a single field."""

    json: str = ""
    binding: str = ""
    validate: str = ""
    example: str = ""
    enums: str = ""
    format: str = ""
    description: str = ""
    embed: bool = False

    def get(self, key: str) -> str:
        value = getattr(self, key, "")
        return value if isinstance(value, str) else ""

    def merged_with(self, other: Tags) -> Tags:
        """Tags from ``other`` win wherever they are set."""
        values = {}
        for f in fields(self):
            theirs = getattr(other, f.name)
            values[f.name] = theirs if theirs else getattr(self, f.name)
        return Tags(**values)

    @classmethod
    def from_mapping(cls, mapping) -> Tags:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in mapping.items() if k in known})


def _parse_uint(value: str) -> int | None:
    if not re.fullmatch(r"\d+", value):
        return None
    return int(value)


def _parse_float(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


class TagParser:
    """Turns tag strings into schema constraints. Stateless."""

    def parse_name_tag(self, tag: str) -> tuple[str, bool]:
        """'full_name,omitempty' -> ('full_name', True); '-' -> ('-', False)"""
        if not tag:
            return "", False
        name, *options = tag.split(",")
        return name, "omitempty" in options

    def apply_validation_tags(self, schema: Schema, request_tag: str, response_tag: str) -> None:
        if request_tag:
            self._apply_validation_tag(schema, request_tag)
        if response_tag:
            self._apply_validation_tag(schema, response_tag)

    def _apply_validation_tag(self, schema: Schema, tag: str) -> None:
        for part in tag.split(","):
            part = part.strip()
            if not part:
                continue
            if "|" in part:
                # Alternations are not expressed as oneOf; only the first option is kept.
                self._apply_validation_tag(schema, part.split("|", 1)[0])
            elif "=" in part:
                key, value = part.split("=", 1)
                self._apply_key_value(schema, key.strip(), value.strip())
            else:
                self._apply_keyword(schema, part)

    def _apply_keyword(self, schema: Schema, keyword: str) -> None:
        if keyword in _KEYWORD_FORMATS:
            schema.format = _KEYWORD_FORMATS[keyword]
        elif keyword in _KEYWORD_PATTERNS and schema.is_type("string"):
            schema.pattern = _KEYWORD_PATTERNS[keyword]
        # "required" lives on the parent's required list, everything else is ignored.

    def _apply_key_value(self, schema: Schema, key: str, value: str) -> None:
        match key:
            case "max" | "min":
                self._apply_bound(schema, key, value)
            case "len":
                length = _parse_uint(value)
                if schema.is_type("string") and length is not None:
                    schema.min_length = length
                    schema.max_length = length
            case "gt" | "gte" | "lt" | "lte":
                bound = _parse_float(value)
                if not schema.is_numeric or bound is None:
                    return
                if key.startswith("g"):
                    schema.minimum = bound
                    if key == "gt":
                        schema.exclusive_minimum = True
                else:
                    schema.maximum = bound
                    if key == "lt":
                        schema.exclusive_maximum = True
            case "oneof":
                schema.enum = value.split(" ")

    def _apply_bound(self, schema: Schema, key: str, value: str) -> None:
        if schema.is_type("string"):
            length = _parse_uint(value)
            if length is None:
                return
            if key == "max":
                schema.max_length = length
            else:
                schema.min_length = length
        elif schema.is_numeric:
            bound = _parse_float(value)
            if bound is None:
                return
            if key == "max":
                schema.maximum = bound
            else:
                schema.minimum = bound

    def apply_common_tags(self, schema: Schema, tags: Tags) -> None:
        if example := tags.get("example"):
            schema.example = example
        if enums := tags.get("enums"):
            schema.enum = [v.strip() for v in enums.split(",")]
        if fmt := tags.get("format"):
            schema.format = fmt
        if description := tags.get("description"):
            schema.description = description

    def is_required(self, request_tag: str, response_tag: str, optional: bool) -> bool:
        if optional:
            return False
        return "required" in request_tag or "required" in response_tag
