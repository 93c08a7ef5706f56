"""Plugin manifest loading for plinv.

Reads an operator-supplied manifest and turns it into validated
``ManifestEntry`` objects, in manifest order. Loading never touches the
network and never silently drops or coerces a malformed entry.
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from plinv import exit_codes
from plinv.errors import InventoryError, format_validation_errors
from plinv.manifest_schema import ManifestDocument, ManifestEntry, PluginKey, PluginManifestEntry


class ManifestError(InventoryError):
    """Raised when a manifest cannot be read or an entry is invalid."""

    exit_code = exit_codes.MANIFEST_INVALID

    def __init__(self, reason: str, entry_index: int | None = None, path: Path | None = None) -> None:
        """Initialize with the failure reason and the offending entry index."""
        self.reason = reason
        self.entry_index = entry_index
        self.path = path
        where = f"manifest '{path}'" if path else "manifest"
        if entry_index is not None:
            where += f" entry {entry_index}"
        super().__init__(f"Invalid {where}: {reason}")


def load_manifest(path: Path, require_artifacts: bool = True) -> list[ManifestEntry]:
    """Load and validate a plugin manifest.

    Entries are validated in order and the first violation is raised:
    schema errors, then a (name, target, version) collision with an earlier
    entry, then a missing artifact list when metadata-only records are not
    allowed.

    Args:
        path: Path to the YAML manifest.
        require_artifacts: Enforce the metadata-only guard. Pass False when the
            manifest only selects existing plugins by key.

    Returns:
        Validated entries in manifest order.

    Raises:
        ManifestError: If the file is missing, unparsable, or any entry is invalid.
    """
    if not path.is_file():
        msg = "file does not exist"
        raise ManifestError(msg, path=path)

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"file is not valid UTF-8: {e.reason}", path=path) from e
    except OSError as e:
        raise ManifestError(f"cannot read file: {e.strerror or e}", path=path) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"invalid YAML: {e}", path=path) from e

    if data is None:
        msg = "empty file"
        raise ManifestError(msg, path=path)

    try:
        document = ManifestDocument.model_validate(data)
    except ValidationError as e:
        raise ManifestError(format_validation_errors(e), path=path) from e

    entries: list[ManifestEntry] = []
    seen: dict[PluginKey, int] = {}
    for index, raw in enumerate(document.plugins):
        try:
            plugin = PluginManifestEntry.model_validate(raw)
        except ValidationError as e:
            raise ManifestError(format_validation_errors(e), entry_index=index, path=path) from e
        entry = ManifestEntry(**plugin.model_dump(), index=index)

        if entry.key in seen:
            msg = f"plugin '{entry.key}' duplicates entry {seen[entry.key]}"
            raise ManifestError(msg, entry_index=index, path=path)

        if require_artifacts and not entry.artifacts and not document.allow_metadata_only:
            msg = (
                f"plugin '{entry.key}' has no artifacts; "
                "set allow_metadata_only: true to publish metadata-only records"
            )
            raise ManifestError(msg, entry_index=index, path=path)

        seen[entry.key] = index
        entries.append(entry)

    return entries
