"""Environment-driven configuration for plinv.

Values are resolved at call time so tests and CI jobs can override them
with environment variables.
"""

import os

# Tag used when the operator does not pass one
DEFAULT_INVENTORY_IMAGE_TAG = "latest"

# Image name appended to the repository to address the inventory image
DEFAULT_INVENTORY_IMAGE_NAME = "plugin-inventory"

# Database file carried inside the inventory image
INVENTORY_DB_FILE = "plugin_inventory.db"

# Environment variables
IMGPKG_ENV_VAR = "PLINV_IMGPKG"
INVENTORY_IMAGE_NAME_ENV_VAR = "PLINV_INVENTORY_IMAGE_NAME"


def get_imgpkg_path() -> str:
    """Get the imgpkg executable to invoke.

    Resolution order:
    1. PLINV_IMGPKG environment variable (if set)
    2. Default: ``imgpkg`` looked up on PATH
    """
    env_value = os.environ.get(IMGPKG_ENV_VAR)
    if env_value:
        return os.path.expanduser(env_value)
    return "imgpkg"


def get_inventory_image_name() -> str:
    """Get the image name of the plugin inventory within a repository."""
    env_value = os.environ.get(INVENTORY_IMAGE_NAME_ENV_VAR, "").strip().strip("/")
    return env_value or DEFAULT_INVENTORY_IMAGE_NAME
