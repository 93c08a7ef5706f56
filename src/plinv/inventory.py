"""Plugin inventory mutation for plinv.

Each operation is one pull -> open -> mutate -> serialize -> push cycle.
All validation and mutation happen locally before the push, so a failure
at any earlier step leaves the remote inventory untouched. Nothing is kept
between calls: every operation starts from freshly pulled bytes.

There is no locking across invocations. Two operators mutating the same
tag concurrently race, and the last push wins unless ``check_unchanged``
is set, in which case the engine refuses to push over a remote inventory
that changed since it was pulled.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path

from plinv import exit_codes
from plinv.config import DEFAULT_INVENTORY_IMAGE_TAG
from plinv.errors import InventoryError
from plinv.imgpkg import ImageNotFoundError, ImageRef, InventoryTransport, inventory_image_ref
from plinv.manifest import load_manifest
from plinv.store import InsertResult, InventoryStore, UpdateResult


class InvalidOptionsError(InventoryError):
    """Raised when an operation is invoked with missing or conflicting options."""

    exit_code = exit_codes.INVALID_ARGS


class ConcurrentUpdateError(InventoryError):
    """Raised when the remote inventory changed between pull and push."""

    exit_code = exit_codes.CONCURRENT_UPDATE

    def __init__(self, image_ref: ImageRef) -> None:
        """Initialize with the image that changed underneath the operation."""
        self.image_ref = image_ref
        super().__init__(
            f"Inventory image '{image_ref}' changed since it was pulled; "
            "nothing was pushed, re-run the operation"
        )


class InventoryExistsError(InventoryError):
    """Raised when initializing an inventory that is already published."""

    exit_code = exit_codes.INVENTORY_EXISTS

    def __init__(self, image_ref: ImageRef) -> None:
        """Initialize with the image reference that already exists."""
        self.image_ref = image_ref
        super().__init__(
            f"Inventory image '{image_ref}' already exists; use override to replace it"
        )


@dataclass
class InventoryPluginUpdateOptions:
    """Options shared by the plugin insert and activation operations."""

    repository: str
    vendor: str
    publisher: str
    inventory_image_tag: str = DEFAULT_INVENTORY_IMAGE_TAG
    manifest_file: Path | None = None
    deactivate_plugins: bool = False
    skip_existing: bool = False
    check_unchanged: bool = False

    def validate(self, require_manifest: bool) -> None:
        """Check the options before any remote call is made.

        Raises:
            InvalidOptionsError: If a required option is missing or blank.
        """
        for option in ("repository", "vendor", "publisher", "inventory_image_tag"):
            if not getattr(self, option).strip():
                msg = f"Option '{option}' must not be empty"
                raise InvalidOptionsError(msg)

        if require_manifest and self.manifest_file is None:
            msg = "A manifest file is required to insert plugins"
            raise InvalidOptionsError(msg)

    @property
    def image_ref(self) -> ImageRef:
        return inventory_image_ref(self.repository, self.inventory_image_tag)


def _digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _push(
    transport: InventoryTransport,
    image_ref: ImageRef,
    data: bytes,
    pre_image: bytes | None = None,
) -> None:
    """Push updated bytes, optionally refusing if the remote moved on."""
    if pre_image is not None and _digest(transport.pull(image_ref)) != _digest(pre_image):
        raise ConcurrentUpdateError(image_ref)
    transport.push(image_ref, data)


def plugin_insert(
    options: InventoryPluginUpdateOptions,
    transport: InventoryTransport,
) -> InsertResult:
    """Insert the plugins of a manifest into the remote inventory.

    The manifest is loaded and validated before the inventory is pulled.
    New records are owned by the options' vendor/publisher and are
    deactivated when ``deactivate_plugins`` is set.

    Args:
        options: Repository coordinates, scope and manifest.
        transport: Collaborator that pulls and pushes inventory bytes.

    Returns:
        InsertResult listing inserted and skipped plugin keys.

    Raises:
        InvalidOptionsError: If options are missing.
        ManifestError: If the manifest is invalid.
        PullError: If the inventory cannot be pulled.
        CorruptStoreError: If the pulled inventory cannot be read.
        ConflictError: If a plugin already exists and skip_existing is not set.
        ConcurrentUpdateError: If check_unchanged is set and the remote changed.
        PushError: If the updated inventory cannot be pushed.
    """
    options.validate(require_manifest=True)
    assert options.manifest_file is not None
    entries = load_manifest(options.manifest_file)

    image_ref = options.image_ref
    pulled = transport.pull(image_ref)

    with InventoryStore.open(pulled) as store:
        result = store.insert(
            entries,
            vendor=options.vendor,
            publisher=options.publisher,
            activate_on_insert=not options.deactivate_plugins,
            skip_existing=options.skip_existing,
        )
        updated = store.serialize()

    _push(transport, image_ref, updated, pulled if options.check_unchanged else None)
    return result


def update_plugin_activation_state(
    options: InventoryPluginUpdateOptions,
    transport: InventoryTransport,
) -> UpdateResult:
    """Activate or deactivate the plugins owned by a vendor/publisher.

    ``deactivate_plugins`` selects the new state. When a manifest is given,
    only the plugins it lists are changed; otherwise every plugin in the
    scope is.

    Raises:
        InvalidOptionsError: If options are missing.
        ManifestError: If the optional manifest is invalid.
        PullError: If the inventory cannot be pulled.
        CorruptStoreError: If the pulled inventory cannot be read.
        NotFoundError: If no plugin in scope matches.
        ConcurrentUpdateError: If check_unchanged is set and the remote changed.
        PushError: If the updated inventory cannot be pushed.
    """
    options.validate(require_manifest=False)
    keys = None
    if options.manifest_file is not None:
        entries = load_manifest(options.manifest_file, require_artifacts=False)
        keys = [entry.key for entry in entries]

    image_ref = options.image_ref
    pulled = transport.pull(image_ref)

    with InventoryStore.open(pulled) as store:
        result = store.set_activation(
            options.vendor,
            options.publisher,
            activated=not options.deactivate_plugins,
            keys=keys,
        )
        updated = store.serialize()

    _push(transport, image_ref, updated, pulled if options.check_unchanged else None)
    return result


def init_inventory(
    repository: str,
    transport: InventoryTransport,
    tag: str = DEFAULT_INVENTORY_IMAGE_TAG,
    override: bool = False,
) -> ImageRef:
    """Publish an empty plugin inventory.

    Without ``override`` an already published inventory is left alone. Only
    an explicit not-found answer from the registry counts as no inventory;
    any other pull failure is raised.

    Returns:
        The reference the empty inventory was pushed to.

    Raises:
        InvalidOptionsError: If repository or tag is blank.
        InventoryExistsError: If the inventory exists and override is False.
        PullError: If the existence check fails for a reason other than not-found.
        PushError: If the inventory cannot be pushed.
    """
    if not repository.strip() or not tag.strip():
        msg = "Options 'repository' and 'inventory_image_tag' must not be empty"
        raise InvalidOptionsError(msg)

    image_ref = inventory_image_ref(repository, tag)
    if not override:
        try:
            transport.pull(image_ref)
        except ImageNotFoundError:
            pass
        else:
            raise InventoryExistsError(image_ref)

    with InventoryStore.create() as store:
        data = store.serialize()
    transport.push(image_ref, data)
    return image_ref
