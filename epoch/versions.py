"""API versions and the ordered bundle of them.

Versions are dates (``2024-01-01``), semvers (``1.2.3``, ``v1.2``) or free strings; the
``head`` sentinel stands for the current, unversioned shape and is never migrated.
"""

from __future__ import annotations

import datetime
import functools
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from epoch.version_change import VersionChange

HEAD = "head"

_SEMVER_RE = re.compile(r"^v?(\d+)\.(\d+)(?:\.(\d+))?$")


class VersionKind(StrEnum):
    DATE = "date"
    SEMVER = "semver"
    STRING = "string"
    HEAD = "head"


# === Exceptions ===


class VersionBundleError(ValueError):
    """The versions or changes handed to a bundle are inconsistent."""


class VersionNotFoundError(LookupError):
    """Requested version does not exist in the bundle."""


# === Version ===


@functools.total_ordering
@dataclass(eq=False)
class Version:
    raw: str
    kind: VersionKind
    date: datetime.date | None = None
    semver: tuple[int, int, int] | None = None
    # Changes leading from the previous version to this one.
    changes: list[VersionChange] = field(default_factory=list, repr=False)

    @classmethod
    def head(cls) -> Version:
        return cls(raw=HEAD, kind=VersionKind.HEAD)

    @classmethod
    def from_date(cls, value: str | datetime.date) -> Version:
        if isinstance(value, datetime.date):
            return cls(raw=value.isoformat(), kind=VersionKind.DATE, date=value)
        try:
            parsed = datetime.date.fromisoformat(value)
        except ValueError as e:
            raise ValueError(f"invalid date version {value!r}: expected YYYY-MM-DD") from e
        if len(value) != 10:
            raise ValueError(f"invalid date version {value!r}: expected YYYY-MM-DD")
        return cls(raw=value, kind=VersionKind.DATE, date=parsed)

    @classmethod
    def from_semver(cls, value: str) -> Version:
        match = _SEMVER_RE.match(value)
        if match is None:
            raise ValueError(
                f"invalid semver {value!r}: expected major.minor.patch or major.minor"
            )
        major, minor, patch = match.groups()
        return cls(
            raw=value.removeprefix("v"),
            kind=VersionKind.SEMVER,
            semver=(int(major), int(minor), int(patch or 0)),
        )

    @classmethod
    def from_string(cls, value: str) -> Version:
        return cls(raw=value, kind=VersionKind.STRING)

    @classmethod
    def parse(cls, value: str) -> Version:
        """Parse as a date, then as a semver, falling back to a plain string version."""
        if value == HEAD:
            return cls.head()
        try:
            return cls.from_date(value)
        except ValueError:
            pass
        try:
            return cls.from_semver(value)
        except ValueError:
            return cls.from_string(value)

    @property
    def is_head(self) -> bool:
        return self.kind is VersionKind.HEAD

    def __str__(self) -> str:
        return self.raw

    def _compare(self, other: Version) -> int:
        if self.is_head or other.is_head:
            return int(self.is_head) - int(other.is_head)
        if self.kind == other.kind == VersionKind.DATE:
            return (self.date > other.date) - (self.date < other.date)
        if self.kind == other.kind == VersionKind.SEMVER:
            return (self.semver > other.semver) - (self.semver < other.semver)
        # Date versions predate semver ones.
        if {self.kind, other.kind} == {VersionKind.DATE, VersionKind.SEMVER}:
            return -1 if self.kind == VersionKind.DATE else 1
        return (self.raw > other.raw) - (self.raw < other.raw)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._compare(other) == 0

    def __lt__(self, other: Version) -> bool:
        return self._compare(other) < 0

    def __hash__(self) -> int:
        return hash((self.kind, self.raw))


# === Bundle ===


class VersionBundle:
    """Ascending list of versions plus the head sentinel.

    Each ``VersionChange`` is attached to its newer endpoint (``to_version``).
    """

    def __init__(self, versions: list[Version], changes: list[VersionChange] | None = None):
        if not versions:
            raise VersionBundleError("at least one version must be defined in a VersionBundle")

        if versions[0].is_head:
            self.head_version, versions = versions[0], versions[1:]
        else:
            self.head_version = Version.head()

        seen: set[str] = set()
        for v in versions:
            if v.is_head:
                raise VersionBundleError("the head version may only appear first")
            if str(v) in seen:
                raise VersionBundleError(f"duplicate version detected: {str(v)!r}")
            seen.add(str(v))

        self.versions: list[Version] = sorted(versions)
        for change in changes or []:
            self._attach(change)

        if len(self.versions) > 1 and self.versions[0].changes:
            raise VersionBundleError(
                f"the oldest version {str(self.versions[0])!r} cannot have version changes "
                "(it's the baseline with nothing to migrate from)"
            )

    def _attach(self, change: VersionChange) -> None:
        target = next((v for v in self.versions if v == change.to_version), None)
        if target is None:
            raise VersionBundleError(
                f"version change {change.description!r} targets unknown version "
                f"{str(change.to_version)!r}"
            )
        target.changes.append(change)

    @property
    def version_values(self) -> list[str]:
        return [str(v) for v in self.versions]

    def all_versions(self) -> list[Version]:
        """Head first, then every version from newest to oldest."""
        return [self.head_version, *reversed(self.versions)]

    def parse_version(self, value: str) -> Version:
        if value in (HEAD, ""):
            return self.head_version
        for v in self.versions:
            if str(v) == value:
                return v
        raise VersionNotFoundError(
            f"unknown version {value!r}: available versions are {self.version_values}"
        )

    def is_version_defined(self, value: str) -> bool:
        return value == HEAD or value in self.version_values

    def newer_than(self, version: Version) -> list[Version]:
        """Versions strictly newer than ``version``, newest first."""
        return [v for v in reversed(self.versions) if v > version]

    def closest_lesser_version(self, value: str) -> Version:
        target = Version.parse(value)
        lesser = [v for v in self.versions if v < target]
        if not lesser:
            raise VersionNotFoundError(
                f"no version found that is less than {value!r} "
                f"(available versions: {self.version_values})"
            )
        return max(lesser)

    def __iter__(self):
        return iter(self.versions)

    def __len__(self) -> int:
        return len(self.versions)
