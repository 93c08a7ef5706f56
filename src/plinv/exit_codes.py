"""Exit codes for plinv CLI commands.

Input errors, local conflicts, and transport failures each get their own
code so CI pipelines can tell them apart.
"""

# Success
SUCCESS = 0

# Errors
GENERAL_ERROR = 1
INVALID_ARGS = 2
MANIFEST_INVALID = 3
PLUGIN_CONFLICT = 4
PLUGIN_NOT_FOUND = 5
TRANSPORT_ERROR = 6
INVENTORY_CORRUPT = 7
CONCURRENT_UPDATE = 8
INVENTORY_EXISTS = 9
