"""plinv CLI entry point."""

import sys
from pathlib import Path
from typing import Annotated

import typer

from plinv import __version__, cli_logger, exit_codes
from plinv.config import DEFAULT_INVENTORY_IMAGE_TAG
from plinv.errors import InventoryError, handle_cli_error
from plinv.imgpkg import ImgpkgClient, InventoryTransport
from plinv.inventory import (
    InventoryPluginUpdateOptions,
    init_inventory,
    plugin_insert,
    update_plugin_activation_state,
)
from plinv.manifest_schema import PluginKey

app = typer.Typer(
    name="plinv",
    help="Publish and mutate the plugin inventory image of a repository.",
    no_args_is_help=True,
)

inventory_app = typer.Typer(
    help="Plugin inventory operations.",
    no_args_is_help=True,
)
plugin_app = typer.Typer(
    help="Insert, activate and deactivate plugins in the inventory.",
    no_args_is_help=True,
)
inventory_app.add_typer(plugin_app, name="plugin")
app.add_typer(inventory_app, name="inventory")


RepositoryOption = Annotated[
    str,
    typer.Option("--repository", help="Repository hosting the plugin inventory image."),
]
TagOption = Annotated[
    str,
    typer.Option(
        "--plugin-inventory-image-tag",
        help="Tag of the plugin inventory image to pull and publish.",
    ),
]
VendorOption = Annotated[str, typer.Option("--vendor", help="Name of the vendor.")]
PublisherOption = Annotated[str, typer.Option("--publisher", help="Name of the publisher.")]
CheckUnchangedOption = Annotated[
    bool,
    typer.Option(
        "--check-unchanged",
        help="Refuse to push if the remote inventory changed since it was pulled.",
    ),
]


def get_transport() -> InventoryTransport:
    """Create the transport used to pull and push the inventory image."""
    return ImgpkgClient()


def _fail(error: Exception) -> typer.Exit:
    return typer.Exit(handle_cli_error(error))


def _key_rows(keys: list[PluginKey], status: str) -> list[list[str]]:
    return [[key.name, key.target, key.version, status] for key in keys]


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        cli_logger.info(f"plinv {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show plinv version and exit.",
    ),
) -> None:
    """Publish and mutate the plugin inventory image of a repository."""


@inventory_app.command("init")
def init(
    repository: RepositoryOption,
    tag: TagOption = DEFAULT_INVENTORY_IMAGE_TAG,
    override: Annotated[
        bool,
        typer.Option("--override", help="Replace an existing inventory image."),
    ] = False,
) -> None:
    """Publish an empty plugin inventory image."""
    try:
        image_ref = init_inventory(repository, get_transport(), tag=tag, override=override)
    except (InventoryError, OSError) as e:
        raise _fail(e) from e

    cli_logger.success(f"Published empty plugin inventory to {image_ref}")
    raise typer.Exit(exit_codes.SUCCESS)


@plugin_app.command("insert")
def insert(
    repository: RepositoryOption,
    vendor: VendorOption,
    publisher: PublisherOption,
    manifest: Annotated[
        Path,
        typer.Option("--manifest", help="Manifest listing the plugins to insert."),
    ],
    tag: TagOption = DEFAULT_INVENTORY_IMAGE_TAG,
    deactivate: Annotated[
        bool,
        typer.Option("--deactivate", help="Insert the plugins as deactivated."),
    ] = False,
    skip_existing: Annotated[
        bool,
        typer.Option("--skip-existing", help="Skip plugins that are already in the inventory."),
    ] = False,
    check_unchanged: CheckUnchangedOption = False,
) -> None:
    """Insert plugins from a manifest into the inventory on the remote repository."""
    options = InventoryPluginUpdateOptions(
        repository=repository,
        vendor=vendor,
        publisher=publisher,
        inventory_image_tag=tag,
        manifest_file=manifest,
        deactivate_plugins=deactivate,
        skip_existing=skip_existing,
        check_unchanged=check_unchanged,
    )

    cli_logger.step(f"Updating plugin inventory {options.image_ref}")
    try:
        result = plugin_insert(options, get_transport())
    except (InventoryError, OSError) as e:
        raise _fail(e) from e

    cli_logger.table(
        "Plugins",
        ["Name", "Target", "Version", "Status"],
        _key_rows(result.inserted, "inserted") + _key_rows(result.skipped, "skipped"),
    )
    state = "deactivated" if deactivate else "activated"
    cli_logger.success(
        f"Inserted {len(result.inserted)} {state} plugin(s) for "
        f"vendor '{vendor}', publisher '{publisher}'"
    )
    if result.skipped:
        cli_logger.warning(f"Skipped {len(result.skipped)} plugin(s) already in the inventory")
    raise typer.Exit(exit_codes.SUCCESS)


def _update_activation(
    repository: str,
    vendor: str,
    publisher: str,
    manifest: Path | None,
    tag: str,
    check_unchanged: bool,
    *,
    deactivate: bool,
) -> None:
    options = InventoryPluginUpdateOptions(
        repository=repository,
        vendor=vendor,
        publisher=publisher,
        inventory_image_tag=tag,
        manifest_file=manifest,
        deactivate_plugins=deactivate,
        check_unchanged=check_unchanged,
    )
    verb = "Deactivated" if deactivate else "Activated"

    cli_logger.step(f"Updating plugin inventory {options.image_ref}")
    try:
        result = update_plugin_activation_state(options, get_transport())
    except (InventoryError, OSError) as e:
        raise _fail(e) from e

    cli_logger.table(
        "Plugins",
        ["Name", "Target", "Version", "Status"],
        _key_rows(result.updated, verb.lower()),
    )
    cli_logger.success(
        f"{verb} {len(result.updated)} plugin(s) for vendor '{vendor}', publisher '{publisher}'"
    )
    raise typer.Exit(exit_codes.SUCCESS)


ActivationManifestOption = Annotated[
    Path | None,
    typer.Option("--manifest", help="Only change the plugins listed in this manifest."),
]


@plugin_app.command("activate")
def activate(
    repository: RepositoryOption,
    vendor: VendorOption,
    publisher: PublisherOption,
    manifest: ActivationManifestOption = None,
    tag: TagOption = DEFAULT_INVENTORY_IMAGE_TAG,
    check_unchanged: CheckUnchangedOption = False,
) -> None:
    """Activate existing plugins in the inventory on the remote repository."""
    _update_activation(repository, vendor, publisher, manifest, tag, check_unchanged, deactivate=False)


@plugin_app.command("deactivate")
def deactivate(
    repository: RepositoryOption,
    vendor: VendorOption,
    publisher: PublisherOption,
    manifest: ActivationManifestOption = None,
    tag: TagOption = DEFAULT_INVENTORY_IMAGE_TAG,
    check_unchanged: CheckUnchangedOption = False,
) -> None:
    """Deactivate existing plugins in the inventory on the remote repository."""
    _update_activation(repository, vendor, publisher, manifest, tag, check_unchanged, deactivate=True)


def main_cli() -> None:
    """CLI entry point with top-level exception handling.

    Wraps the Typer app to catch any unhandled exceptions and format them
    as clean error messages instead of raw tracebacks.
    """
    try:
        app()
    except Exception as e:
        sys.exit(handle_cli_error(e))


if __name__ == "__main__":
    main_cli()
