"""Mapping between legacy package names and scoped node package names.

Legacy names are either bare (``tracker``) or author-qualified
(``iron:router``).  Bare names live under the default scope
(``@meteor/tracker``); qualified names use the author as their scope
(``@iron/router``).
"""

from __future__ import annotations

DEFAULT_SCOPE = "meteor"

# Package names can only contain lowercase ASCII alphanumerics, dash, dot or colon.
TEST_SUFFIX = "--test--"


def to_node_name(name: str) -> str:
    """Return the scoped node package name for legacy *name*."""
    if ":" in name:
        return "@" + "/".join(name.split(":"))
    return f"@{DEFAULT_SCOPE}/{name}"


def from_node_name(node_name: str) -> str:
    """Return the legacy package name for scoped *node_name*."""
    if node_name.startswith(f"@{DEFAULT_SCOPE}/"):
        return node_name.split("/", 1)[1]
    return ":".join(node_name[1:].split("/"))


def package_dir(name: str) -> str:
    """Relative output directory for legacy *name* (``iron:router`` -> ``@iron/router``)."""
    if ":" not in name:
        return name
    return "@" + "/".join(name.split(":"))


def archive_dir(name: str) -> str:
    """Folder name a pre-built archive of *name* is stored under."""
    return name.replace(":", "_")


def split_constraint(spec: str) -> tuple[str, str | None]:
    """Split ``name@constraint`` into its parts; the constraint may be absent."""
    name, _, constraint = spec.partition("@")
    return name, constraint or None


def is_test_name(name: str) -> bool:
    return name.endswith(TEST_SUFFIX)


def strip_test_suffix(name: str) -> str:
    if name.endswith(TEST_SUFFIX):
        return name[: -len(TEST_SUFFIX)]
    return name
