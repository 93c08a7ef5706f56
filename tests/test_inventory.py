"""Tests for the plugin inventory pull/mutate/push operations."""

from pathlib import Path

import pytest

from plinv.imgpkg import ImageRef, PullError, PushError, inventory_image_ref
from plinv.inventory import (
    ConcurrentUpdateError,
    InvalidOptionsError,
    InventoryExistsError,
    InventoryPluginUpdateOptions,
    init_inventory,
    plugin_insert,
    update_plugin_activation_state,
)
from plinv.manifest import ManifestError
from plinv.manifest_schema import PluginKey
from plinv.store import ConflictError, CorruptStoreError, InventoryStore, NotFoundError
from tests.conftest import (
    PUBLISHER,
    REPOSITORY,
    VENDOR,
    FakeTransport,
    empty_inventory,
    manifest_entries,
    plugin_data,
    write_manifest,
)

FOO = PluginKey("foo", "kubernetes", "v1.0.0")
BAR = PluginKey("bar", "kubernetes", "v1.0.0")


def _options(manifest: Path | None = None, **overrides: object) -> InventoryPluginUpdateOptions:
    values: dict = {
        "repository": REPOSITORY,
        "vendor": VENDOR,
        "publisher": PUBLISHER,
        "manifest_file": manifest,
    }
    values.update(overrides)
    return InventoryPluginUpdateOptions(**values)


def _records(transport: FakeTransport, image_ref: ImageRef) -> dict[PluginKey, bool]:
    """Map of key -> activated for the inventory currently at image_ref."""
    with InventoryStore.open(transport.images[image_ref]) as store:
        return {record.key: record.activated for record in store.list_plugins()}


def _seed(transport: FakeTransport, image_ref: ImageRef, *plugins: dict, vendor: str = VENDOR) -> bytes:
    """Replace the remote inventory with one holding the given plugins."""
    with InventoryStore.create() as store:
        store.insert(manifest_entries(*plugins), vendor=vendor, publisher=vendor)
        data = store.serialize()
    transport.images[image_ref] = data
    return data


class TestPluginInsert:
    """Tests for plugin_insert."""

    def test_insert_into_empty_inventory(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a manifest entry is published as an activated record."""
        # Given
        manifest = write_manifest(tmp_path, [plugin_data()])

        # When
        result = plugin_insert(_options(manifest), transport)

        # Then
        assert result.inserted == [FOO]
        assert transport.pulls == [image_ref]
        assert transport.pushes == [image_ref]
        assert _records(transport, image_ref) == {FOO: True}

    def test_deactivate_on_insert(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify deactivate_plugins inserts records as deactivated."""
        manifest = write_manifest(tmp_path, [plugin_data()])

        plugin_insert(_options(manifest, deactivate_plugins=True), transport)

        assert _records(transport, image_ref) == {FOO: False}

    def test_custom_tag(self, tmp_path: Path, transport: FakeTransport) -> None:
        """Verify the inventory tag selects both the pulled and pushed image."""
        # Given
        tagged = inventory_image_ref(REPOSITORY, "v1")
        transport.images[tagged] = empty_inventory()
        manifest = write_manifest(tmp_path, [plugin_data()])

        # When
        plugin_insert(_options(manifest, inventory_image_tag="v1"), transport)

        # Then
        assert transport.pulls == [tagged]
        assert transport.pushes == [tagged]

    def test_invalid_manifest_makes_no_remote_calls(
        self, tmp_path: Path, transport: FakeTransport
    ) -> None:
        """Verify manifest validation happens before the pull."""
        manifest = write_manifest(tmp_path, [plugin_data(version="not-semver")])

        with pytest.raises(ManifestError):
            plugin_insert(_options(manifest), transport)

        assert transport.pulls == []
        assert transport.pushes == []

    def test_missing_manifest_option(self, transport: FakeTransport) -> None:
        """Verify insert without a manifest is rejected before any remote call."""
        with pytest.raises(InvalidOptionsError, match="manifest"):
            plugin_insert(_options(None), transport)

        assert transport.pulls == []

    @pytest.mark.parametrize("option", ["repository", "vendor", "publisher", "inventory_image_tag"])
    def test_blank_option_rejected(
        self, tmp_path: Path, transport: FakeTransport, option: str
    ) -> None:
        """Verify blank coordinates or scope are rejected up front."""
        manifest = write_manifest(tmp_path, [plugin_data()])

        with pytest.raises(InvalidOptionsError, match=option):
            plugin_insert(_options(manifest, **{option: "  "}), transport)

        assert transport.pulls == []

    def test_conflict_leaves_remote_unchanged(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a duplicate key fails without pushing anything."""
        # Given
        before = _seed(transport, image_ref, plugin_data())
        manifest = write_manifest(tmp_path, [plugin_data(name="bar"), plugin_data()])

        # When
        with pytest.raises(ConflictError) as exc_info:
            plugin_insert(_options(manifest), transport)

        # Then
        assert exc_info.value.key == FOO
        assert transport.pushes == []
        assert transport.images[image_ref] == before

    def test_skip_existing_is_idempotent(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify re-running the same insert with skip_existing changes nothing."""
        # Given
        manifest = write_manifest(tmp_path, [plugin_data(), plugin_data(name="bar")])
        options = _options(manifest, skip_existing=True)
        plugin_insert(options, transport)
        after_first = transport.images[image_ref]

        # When
        result = plugin_insert(options, transport)

        # Then
        assert result.inserted == []
        assert result.skipped == [FOO, BAR]
        assert transport.images[image_ref] == after_first

    def test_pull_failure_surfaces_pull_error(
        self, tmp_path: Path, transport: FakeTransport
    ) -> None:
        """Verify transport pull failures are raised as-is."""
        transport.fail_pull = True
        manifest = write_manifest(tmp_path, [plugin_data()])

        with pytest.raises(PullError, match="connection refused"):
            plugin_insert(_options(manifest), transport)

        assert transport.pushes == []

    def test_push_failure_leaves_remote_unchanged(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a failed push loses the local change and keeps the remote as it was."""
        # Given
        before = transport.images[image_ref]
        transport.fail_push = True
        manifest = write_manifest(tmp_path, [plugin_data()])

        # When
        with pytest.raises(PushError, match="unauthorized"):
            plugin_insert(_options(manifest), transport)

        # Then
        assert transport.images[image_ref] == before

    def test_corrupt_remote_inventory(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify an unreadable pulled inventory fails without pushing."""
        transport.images[image_ref] = b"\x00" * 4096
        manifest = write_manifest(tmp_path, [plugin_data()])

        with pytest.raises(CorruptStoreError):
            plugin_insert(_options(manifest), transport)

        assert transport.pushes == []


class TestUpdatePluginActivationState:
    """Tests for update_plugin_activation_state."""

    def test_deactivate_scope(self, transport: FakeTransport, image_ref: ImageRef) -> None:
        """Verify every plugin of the vendor/publisher is deactivated."""
        # Given
        _seed(transport, image_ref, plugin_data())

        # When
        result = update_plugin_activation_state(_options(deactivate_plugins=True), transport)

        # Then
        assert result.updated == [FOO]
        assert transport.pushes == [image_ref]
        assert _records(transport, image_ref) == {FOO: False}

    def test_unknown_scope_raises_not_found_without_push(
        self, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a scope matching nothing is an error and nothing is pushed."""
        # Given
        before = _seed(transport, image_ref, plugin_data())

        # When
        with pytest.raises(NotFoundError):
            update_plugin_activation_state(
                _options(vendor="other", publisher="other", deactivate_plugins=True), transport
            )

        # Then
        assert transport.pushes == []
        assert transport.images[image_ref] == before

    def test_activate_after_deactivate(self, transport: FakeTransport, image_ref: ImageRef) -> None:
        """Verify a deactivated scope can be activated again."""
        _seed(transport, image_ref, plugin_data(), plugin_data(name="bar"))
        update_plugin_activation_state(_options(deactivate_plugins=True), transport)

        update_plugin_activation_state(_options(deactivate_plugins=False), transport)

        assert _records(transport, image_ref) == {BAR: True, FOO: True}

    def test_manifest_limits_changed_plugins(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a manifest restricts the update to the listed plugins."""
        # Given
        _seed(transport, image_ref, plugin_data(), plugin_data(name="bar"))
        manifest = write_manifest(tmp_path, [plugin_data(name="bar")])

        # When
        result = update_plugin_activation_state(
            _options(manifest, deactivate_plugins=True), transport
        )

        # Then
        assert result.updated == [BAR]
        assert _records(transport, image_ref) == {BAR: False, FOO: True}

    def test_selection_manifest_may_omit_artifacts(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a manifest listing only keys is enough to select plugins."""
        _seed(transport, image_ref, plugin_data(), plugin_data(name="bar"))
        manifest = write_manifest(tmp_path, [plugin_data(name="bar", platforms=())])

        result = update_plugin_activation_state(
            _options(manifest, deactivate_plugins=True), transport
        )

        assert result.updated == [BAR]
        assert _records(transport, image_ref) == {BAR: False, FOO: True}

    def test_other_vendor_untouched(self, transport: FakeTransport, image_ref: ImageRef) -> None:
        """Verify plugins of another vendor keep their activation state."""
        # Given
        with InventoryStore.create() as store:
            store.insert(manifest_entries(plugin_data()), vendor=VENDOR, publisher=PUBLISHER)
            store.insert(manifest_entries(plugin_data(name="bar")), vendor="other", publisher="other")
            transport.images[image_ref] = store.serialize()

        # When
        update_plugin_activation_state(_options(deactivate_plugins=True), transport)

        # Then
        assert _records(transport, image_ref) == {BAR: True, FOO: False}


class TestConcurrentWriters:
    """Tests for two operators mutating the same tag."""

    def _interleave(self, transport: FakeTransport, tmp_path: Path) -> Path:
        """Arrange for another writer to insert 'bar' right after our pull."""
        other_manifest = write_manifest(tmp_path / "other.yaml", [plugin_data(name="bar")])

        def other_writer(fake: FakeTransport) -> None:
            fake.after_pull = None
            plugin_insert(_options(other_manifest), fake)

        transport.after_pull = other_writer
        return write_manifest(tmp_path / "ours.yaml", [plugin_data()])

    def test_last_push_wins_without_check(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify the default single-writer contract loses the other writer's update."""
        manifest = self._interleave(transport, tmp_path)

        plugin_insert(_options(manifest), transport)

        assert _records(transport, image_ref) == {FOO: True}

    def test_check_unchanged_refuses_stale_push(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify check_unchanged detects the other writer and does not push."""
        # Given
        manifest = self._interleave(transport, tmp_path)

        # When
        with pytest.raises(ConcurrentUpdateError):
            plugin_insert(_options(manifest, check_unchanged=True), transport)

        # Then - only the other writer's push happened
        assert transport.pushes == [image_ref]
        assert _records(transport, image_ref) == {BAR: True}

    def test_check_unchanged_pushes_when_remote_is_stable(
        self, tmp_path: Path, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify check_unchanged pushes normally when nobody else wrote."""
        manifest = write_manifest(tmp_path, [plugin_data()])

        plugin_insert(_options(manifest, check_unchanged=True), transport)

        assert transport.pulls == [image_ref, image_ref]
        assert _records(transport, image_ref) == {FOO: True}


class TestInitInventory:
    """Tests for init_inventory."""

    def test_publishes_empty_inventory(self, image_ref: ImageRef) -> None:
        """Verify init pushes an empty inventory when none exists."""
        transport = FakeTransport()

        pushed_ref = init_inventory(REPOSITORY, transport)

        assert pushed_ref == image_ref
        assert transport.images[image_ref] == empty_inventory()

    def test_existing_inventory_requires_override(
        self, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify init refuses to replace an existing inventory."""
        _seed(transport, image_ref, plugin_data())

        with pytest.raises(InventoryExistsError):
            init_inventory(REPOSITORY, transport)

        assert transport.pushes == []

    def test_override_replaces_inventory(
        self, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify override publishes an empty inventory over an existing one."""
        _seed(transport, image_ref, plugin_data())

        init_inventory(REPOSITORY, transport, override=True)

        assert _records(transport, image_ref) == {}
        assert transport.pulls == []

    def test_pull_failure_does_not_replace_inventory(
        self, transport: FakeTransport, image_ref: ImageRef
    ) -> None:
        """Verify a failed existence check is raised instead of publishing an empty inventory."""
        # Given - a published inventory that cannot be reached right now
        published = _seed(transport, image_ref, plugin_data())
        transport.fail_pull = True

        # When / Then
        with pytest.raises(PullError, match="connection refused"):
            init_inventory(REPOSITORY, transport)

        assert transport.pushes == []
        assert transport.images[image_ref] == published

    def test_blank_repository_rejected(self) -> None:
        """Verify a blank repository is rejected."""
        with pytest.raises(InvalidOptionsError):
            init_inventory(" ", FakeTransport())
