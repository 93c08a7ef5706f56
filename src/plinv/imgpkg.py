"""Inventory image transport for plinv.

The plugin inventory is published as an OCI image holding a single
database file. This module addresses that image and moves its bytes to and
from the remote repository through the ``imgpkg`` CLI.
"""

import re
import subprocess
import tempfile
from pathlib import Path
from typing import NamedTuple, Protocol

from plinv import exit_codes
from plinv.config import INVENTORY_DB_FILE, get_imgpkg_path, get_inventory_image_name
from plinv.errors import InventoryError


class ImageRef(NamedTuple):
    """Reference to an image in a remote repository."""

    repository: str
    tag: str

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"


class TransportError(InventoryError):
    """Base class for pull and push failures."""

    exit_code = exit_codes.TRANSPORT_ERROR

    action = "access"

    def __init__(self, image_ref: ImageRef, cause: str) -> None:
        """Initialize with the image reference and the underlying cause."""
        self.image_ref = image_ref
        self.cause = cause
        super().__init__(f"Failed to {self.action} inventory image '{image_ref}': {cause}")


class PullError(TransportError):
    """Raised when the inventory image cannot be pulled."""

    action = "pull"


class ImageNotFoundError(PullError):
    """Raised when the registry reports that the inventory image does not exist."""


class PushError(TransportError):
    """Raised when the inventory image cannot be pushed."""

    action = "push"


# Registry error codes imgpkg passes through for an unknown tag or repository
NOT_FOUND_PATTERN = re.compile(r"MANIFEST_UNKNOWN|NAME_UNKNOWN|manifest unknown", re.IGNORECASE)


def inventory_image_ref(repository: str, tag: str) -> ImageRef:
    """Build the reference of the inventory image inside a repository.

    Args:
        repository: Repository that hosts the inventory, e.g. ``registry.example.com/plugins``.
        tag: Tag of the inventory image.

    Returns:
        ImageRef such as ``registry.example.com/plugins/plugin-inventory:latest``.
    """
    return ImageRef(f"{repository.rstrip('/')}/{get_inventory_image_name()}", tag)


class InventoryTransport(Protocol):
    """Protocol for moving inventory bytes to and from a remote repository.

    Both operations are all-or-nothing from the caller's point of view.
    """

    def pull(self, image_ref: ImageRef) -> bytes:
        """Return the inventory database bytes stored in the image."""
        ...

    def push(self, image_ref: ImageRef, data: bytes) -> None:
        """Publish inventory database bytes as the image."""
        ...


class ImgpkgClient:
    """Inventory transport backed by the ``imgpkg`` CLI.

    Each call works in its own temporary directory, which is removed on
    every exit path. Failures are not retried.
    """

    def __init__(self, imgpkg_path: str | None = None) -> None:
        self.imgpkg_path = imgpkg_path or get_imgpkg_path()

    def _run(self, args: list[str]) -> None:
        subprocess.run(
            [self.imgpkg_path, *args],
            check=True,
            capture_output=True,
            text=True,
        )

    def pull(self, image_ref: ImageRef) -> bytes:
        """Pull the inventory image and return its database bytes.

        Raises:
            ImageNotFoundError: If the registry has no such image.
            PullError: If imgpkg fails otherwise or the image holds no inventory database.
        """
        with tempfile.TemporaryDirectory() as tmp:
            output_dir = Path(tmp) / "inventory"
            try:
                self._run(["pull", "-i", str(image_ref), "-o", str(output_dir)])
            except subprocess.CalledProcessError as e:
                cause = _stderr(e)
                if NOT_FOUND_PATTERN.search(cause):
                    raise ImageNotFoundError(image_ref, cause) from e
                raise PullError(image_ref, cause) from e
            except FileNotFoundError as e:
                raise PullError(image_ref, f"imgpkg executable '{self.imgpkg_path}' not found") from e

            db_path = output_dir / INVENTORY_DB_FILE
            if not db_path.is_file():
                raise PullError(image_ref, f"image does not contain {INVENTORY_DB_FILE}")
            return db_path.read_bytes()

    def push(self, image_ref: ImageRef, data: bytes) -> None:
        """Push database bytes as the inventory image.

        Raises:
            PushError: If imgpkg fails.
        """
        with tempfile.TemporaryDirectory() as tmp:
            bundle_dir = Path(tmp)
            (bundle_dir / INVENTORY_DB_FILE).write_bytes(data)
            try:
                self._run(["push", "-i", str(image_ref), "-f", str(bundle_dir)])
            except subprocess.CalledProcessError as e:
                raise PushError(image_ref, _stderr(e)) from e
            except FileNotFoundError as e:
                raise PushError(image_ref, f"imgpkg executable '{self.imgpkg_path}' not found") from e


def _stderr(error: subprocess.CalledProcessError) -> str:
    output = (error.stderr or "").strip()
    return output or f"imgpkg exited with code {error.returncode}"
