"""Shared test fixtures for plinv tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

from plinv.imgpkg import ImageNotFoundError, ImageRef, PullError, PushError, inventory_image_ref
from plinv.manifest_schema import ManifestEntry
from plinv.store import InventoryStore

REPOSITORY = "registry.example.com/tanzu/plugins"
VENDOR = "acme"
PUBLISHER = "acme"


class FakeTransport:
    """In-memory inventory transport.

    Images live in a dict keyed by ImageRef. Every pull and push is recorded
    so tests can assert which remote calls were made.
    """

    def __init__(self) -> None:
        self.images: dict[ImageRef, bytes] = {}
        self.pulls: list[ImageRef] = []
        self.pushes: list[ImageRef] = []
        self.fail_pull = False
        self.fail_push = False
        # Called with the transport after each successful pull
        self.after_pull: Callable[["FakeTransport"], None] | None = None

    def pull(self, image_ref: ImageRef) -> bytes:
        self.pulls.append(image_ref)
        if self.fail_pull:
            raise PullError(image_ref, "connection refused")
        if image_ref not in self.images:
            raise ImageNotFoundError(image_ref, "MANIFEST_UNKNOWN: manifest unknown")
        data = self.images[image_ref]
        if self.after_pull is not None:
            self.after_pull(self)
        return data

    def push(self, image_ref: ImageRef, data: bytes) -> None:
        if self.fail_push:
            raise PushError(image_ref, "unauthorized")
        self.pushes.append(image_ref)
        self.images[image_ref] = data


def plugin_data(
    name: str = "foo",
    target: str = "kubernetes",
    version: str = "v1.0.0",
    description: str | None = None,
    platforms: tuple[tuple[str, str], ...] = (("linux", "amd64"),),
) -> dict[str, Any]:
    """Build one manifest plugin mapping with an artifact per platform."""
    return {
        "name": name,
        "target": target,
        "version": version,
        "description": description if description is not None else f"Desc for {name}",
        "artifacts": [
            {
                "os": os_name,
                "arch": arch,
                "uri": f"{REPOSITORY}/{os_name}/{arch}/{target}/{name}:{version}",
                "digest": f"sha256:{name}{os_name}{arch}",
            }
            for os_name, arch in platforms
        ],
    }


def manifest_entries(*plugins: dict[str, Any]) -> list[ManifestEntry]:
    """Validate plugin mappings into ManifestEntry objects, in order."""
    return [ManifestEntry.model_validate({**plugin, "index": i}) for i, plugin in enumerate(plugins)]


def write_manifest(path: Path, plugins: list[Any], **top_level: Any) -> Path:
    """Write a YAML manifest with the given plugin mappings.

    If path is a directory, the manifest is written as plugin_manifest.yaml inside it.
    """
    if path.is_dir():
        path = path / "plugin_manifest.yaml"
    path.write_text(yaml.dump({**top_level, "plugins": plugins}, sort_keys=False))
    return path


def empty_inventory() -> bytes:
    """Serialized bytes of a new, empty inventory."""
    with InventoryStore.create() as store:
        return store.serialize()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def image_ref() -> ImageRef:
    """Reference of the inventory image under test."""
    return inventory_image_ref(REPOSITORY, "latest")


@pytest.fixture
def transport(image_ref: ImageRef) -> FakeTransport:
    """Fake transport holding an empty inventory at the default tag."""
    fake = FakeTransport()
    fake.images[image_ref] = empty_inventory()
    return fake
