"""Plugin manifest schema definitions using Pydantic.

This module defines the schema for the YAML manifest an operator hands to
``plinv inventory plugin insert``. Each entry becomes one candidate record
in the plugin inventory database.
"""

import re
from datetime import date
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Schema version - update when manifest schema changes
MANIFEST_SCHEMA_VERSION = "2026-10-01"

# Plugin names: lowercase, alphanumeric + single hyphens, no leading/trailing hyphen
PLUGIN_NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")

# Semantic Versioning 2.0.0 grammar with an optional leading "v"
SEMVER_PATTERN = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


class StrictModel(BaseModel):
    """Base model that forbids extra fields."""

    model_config = ConfigDict(extra="forbid")


class TargetType(str, Enum):
    """Platform category a plugin is built for."""

    KUBERNETES = "kubernetes"
    MISSION_CONTROL = "mission-control"
    GLOBAL = "global"


TARGET_ALIASES = {
    "k8s": TargetType.KUBERNETES,
    "tmc": TargetType.MISSION_CONTROL,
}


class PluginKey(NamedTuple):
    """Unique identity of a plugin record across the whole inventory."""

    name: str
    target: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}/{self.target}/{self.version}"


def normalize_version(value: str) -> str:
    """Validate a semver string and return it with a leading ``v``.

    Raises:
        ValueError: If the value is not a valid semantic version.
    """
    version = value.strip()
    if not SEMVER_PATTERN.match(version):
        msg = f"version '{value}' is not a valid semantic version"
        raise ValueError(msg)
    return version if version.startswith("v") else f"v{version}"


class ArtifactEntry(StrictModel):
    """Downloadable binary of a plugin for one (os, arch) platform."""

    os: str = Field(description="Operating system, e.g. linux, darwin, windows")
    arch: str = Field(description="CPU architecture, e.g. amd64, arm64")
    uri: str = Field(description="Image or download reference for the binary")
    digest: str | None = Field(default=None, description="Content digest of the binary")

    @field_validator("os", "arch", "uri")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject empty or whitespace-only values."""
        v = v.strip()
        if not v:
            msg = "must not be empty"
            raise ValueError(msg)
        return v

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v: str | None) -> str | None:
        """A digest may be omitted but never empty."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            msg = "digest must not be empty when present"
            raise ValueError(msg)
        return v


class PluginManifestEntry(StrictModel):
    """One plugin line item in the manifest."""

    name: str = Field(description="Plugin name")
    target: TargetType = Field(description="Platform category of the plugin")
    version: str = Field(description="Semantic version of the plugin")
    description: str = Field(default="", description="Informational description")
    artifacts: list[ArtifactEntry] = Field(
        default_factory=list,
        description="Per-platform binaries, in publishing order",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate plugin name follows naming rules."""
        if not PLUGIN_NAME_PATTERN.match(v):
            msg = (
                "name must be non-empty, lowercase, and contain only "
                "letters, numbers, and single hyphens"
            )
            raise ValueError(msg)
        return v

    @field_validator("target", mode="before")
    @classmethod
    def resolve_target_alias(cls, v: Any) -> Any:
        """Map short target aliases (k8s, tmc) onto their canonical value."""
        if isinstance(v, str):
            return TARGET_ALIASES.get(v.strip().lower(), v.strip().lower())
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        return normalize_version(v)

    @model_validator(mode="after")
    def validate_unique_platforms(self) -> "PluginManifestEntry":
        """Validate that each (os, arch) platform appears at most once."""
        seen: set[tuple[str, str]] = set()
        for artifact in self.artifacts:
            platform = (artifact.os, artifact.arch)
            if platform in seen:
                msg = f"artifact platform '{artifact.os}/{artifact.arch}' is listed more than once"
                raise ValueError(msg)
            seen.add(platform)
        return self

    @property
    def key(self) -> PluginKey:
        return PluginKey(self.name, self.target.value, self.version)


class ManifestEntry(PluginManifestEntry):
    """A validated manifest entry, tagged with its position in the manifest."""

    index: int = Field(ge=0, description="0-based position in the manifest plugins list")


class ManifestDocument(StrictModel):
    """Root schema for plugin manifest files.

    Entries are kept as raw values here; the loader validates them one at
    a time so the first failing entry can be reported by index.
    """

    schema_version: str | None = Field(
        default=None,
        description="Schema version in YYYY-MM-DD format",
    )
    allow_metadata_only: bool = Field(
        default=False,
        description="Permit entries without any artifacts",
    )
    plugins: list[Any] = Field(description="Plugin entries to insert")

    @field_validator("schema_version", mode="before")
    @classmethod
    def validate_schema_version(cls, v: Any) -> Any:
        # YAML reads an unquoted 2026-10-01 as a date
        if isinstance(v, date):
            v = v.isoformat()
        if v is not None and v != MANIFEST_SCHEMA_VERSION:
            msg = f"unsupported schema_version '{v}' (expected '{MANIFEST_SCHEMA_VERSION}')"
            raise ValueError(msg)
        return v
