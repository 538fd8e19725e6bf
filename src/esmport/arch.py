"""Per-package architecture tree.

Every package owns one :class:`ArchitectureTree`.  Nodes are stored by name
and refer to their parent by name; the parent relationship comes from the
fixed :data:`PARENT_ARCHS` table, so the chain is always acyclic.

Declarations made on an ancestor (``client``) apply to every descendant leaf
(``web.browser``, ``web.browser.legacy``, ``web.cordova``).  Each accessor
takes ``just_own``: ``True`` reads only the node's own delta (used when
serialising), ``False`` merges the full ancestor chain (used for resolution).
"""

from __future__ import annotations

from collections.abc import Iterable

# Each architecture's parent: an export added to ``client`` is seen by every web leaf.
PARENT_ARCHS: dict[str, str] = {
    "web.cordova": "web.browser.legacy",
    "web.browser.legacy": "web.browser",
    "web.browser": "web",
    "web": "client",
}

SYNONYM_ARCHS: dict[str, str] = {
    "legacy": "web.browser.legacy",
    "modern": "web.browser",
    "os": "server",
}

# The architectures entry points are built for; there is no "client" build.
LEAF_ARCHS: tuple[str, ...] = ("web.browser.legacy", "web.browser", "web.cordova", "server")

DEFAULT_ARCHS: tuple[str, ...] = ("client", "server")

DEFAULT_CLIENT_ARCHS: tuple[str, ...] = ("client",)


def canonical_arch(name: str) -> str:
    return SYNONYM_ARCHS.get(name, name)


def arch_lineage(name: str) -> list[str]:
    """*name* followed by all of its ancestors, nearest first."""
    lineage = [canonical_arch(name)]
    while lineage[-1] in PARENT_ARCHS:
        lineage.append(PARENT_ARCHS[lineage[-1]])
    return lineage


def arch_applies(declared: Iterable[str] | None, target: str) -> bool:
    """True when a declaration scoped to *declared* reaches leaf *target*.

    A missing arch list means the default ``client`` + ``server`` pair.
    """
    names = list(declared) if declared else list(DEFAULT_ARCHS)
    lineage = arch_lineage(target)
    return any(canonical_arch(name) in lineage for name in names)


def _merge(first: Iterable[str], second: Iterable[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


class Architecture:
    """One build target of one package."""

    def __init__(self, name: str, tree: ArchitectureTree) -> None:
        self.name = name
        self.parent_name = PARENT_ARCHS.get(name)
        self._tree = tree
        self._exports: list[str] = []
        self._assets: list[str] = []
        self._imports: dict[str, int] = {}
        self._implied: dict[str, None] = {}
        self._preload: dict[str, None] = {}
        self._unordered: dict[str, None] = {}
        self._main_module: str | None = None
        self.modified = False

    def __repr__(self) -> str:
        return f"Architecture({self.name!r}, modified={self.modified})"

    @property
    def parent(self) -> Architecture | None:
        if self.parent_name is None:
            return None
        return self._tree.get(self.parent_name)

    @property
    def export_name(self) -> str:
        """Condition name used in the manifest ``exports`` map."""
        return "node" if self.name == "server" else self.name

    def ancestors(self) -> list[Architecture]:
        result = []
        parent = self.parent
        while parent is not None:
            result.append(parent)
            parent = parent.parent
        return result

    def has_child_archs(self) -> bool:
        return any(arch.parent_name == self.name for arch in self._tree.all())

    # mutators

    def add_export(self, symbol: str) -> None:
        self._exports.append(symbol)
        self.modified = True

    def add_asset(self, file: str) -> None:
        self._assets.append(file)
        self.modified = True

    def add_import(self, item: str) -> None:
        self._imports[item] = self._tree.next_import_order()
        self.modified = True

    def add_implied_package(self, name: str) -> None:
        self._implied.setdefault(name)
        self.modified = True

    def add_preload_package(self, node_name: str) -> None:
        self._preload.setdefault(node_name)
        self.modified = True

    def add_unordered_package(self, node_name: str) -> None:
        self._unordered.setdefault(node_name)
        self.modified = True

    def set_main_module(self, path: str) -> None:
        self._main_module = path
        self.modified = True

    # accessors

    def _inherited(self, attr: str, just_own: bool) -> list[str]:
        own = list(getattr(self, attr))
        parent = self.parent
        if just_own or parent is None:
            return own
        return _merge(parent._inherited(attr, False), own)

    def _import_entries(self) -> dict[str, int]:
        parent = self.parent
        entries = dict(parent._import_entries()) if parent is not None else {}
        entries.update(self._imports)
        return entries

    def get_imports(self, just_own: bool = False) -> list[str]:
        """Imports in the order they were declared, across the ancestor chain."""
        if just_own:
            return list(self._imports)
        entries = self._import_entries()
        return sorted(entries, key=entries.__getitem__)

    def get_implied_packages(self, just_own: bool = False) -> list[str]:
        return self._inherited("_implied", just_own)

    def get_preload_packages(self, just_own: bool = False) -> list[str]:
        return self._inherited("_preload", just_own)

    def get_unordered_packages(self, just_own: bool = False) -> list[str]:
        return self._inherited("_unordered", just_own)

    def get_exports(self, just_own: bool = False) -> list[str]:
        if just_own or self.parent is None:
            return list(self._exports)
        return [*self.parent.get_exports(), *self._exports]

    def get_assets(self, just_own: bool = False) -> list[str]:
        if just_own or self.parent is None:
            return list(self._assets)
        return [*self.parent.get_assets(), *self._assets]

    def get_main_module(self, just_own: bool = False) -> str | None:
        if just_own or self._main_module or self.parent is None:
            return self._main_module
        return self.parent.get_main_module()

    def is_noop(self, just_own: bool = True) -> bool:
        if just_own:
            return not self.modified
        parent = self.parent
        return not self.modified and (parent is None or parent.is_noop(False))

    def get_active_arch(self) -> Architecture:
        """Nearest modified node walking up from this one."""
        parent = self.parent
        if self.modified or parent is None:
            return self
        return parent.get_active_arch()


class ArchitectureTree:
    """Arena of a package's architectures, created lazily by name."""

    def __init__(self) -> None:
        self._archs: dict[str, Architecture] = {}
        self._import_order = 0

    def next_import_order(self) -> int:
        self._import_order += 1
        return self._import_order

    def get(self, name: str) -> Architecture:
        name = canonical_arch(name)
        arch = self._archs.get(name)
        if arch is None:
            parent = PARENT_ARCHS.get(name)
            if parent is not None:
                self.get(parent)
            arch = Architecture(name, self)
            self._archs[name] = arch
        return arch

    def find(self, name: str) -> Architecture | None:
        return self._archs.get(canonical_arch(name))

    def nearest(self, name: str) -> Architecture | None:
        """*name* itself or, when it was never declared, its closest declared ancestor."""
        for candidate in arch_lineage(name):
            arch = self._archs.get(candidate)
            if arch is not None:
                return arch
        return None

    def all(self) -> list[Architecture]:
        return list(self._archs.values())

    def select(self, names: Iterable[str] | None) -> list[Architecture]:
        """Architectures for a declaration; an empty list means client + server."""
        names = list(names or ()) or list(DEFAULT_ARCHS)
        return [self.get(name) for name in names]

    def leaf_archs(self) -> list[Architecture]:
        return [self.get(name) for name in LEAF_ARCHS]

    def active_leaf_archs(self) -> list[Architecture]:
        active: dict[str, Architecture] = {}
        for arch in self.leaf_archs():
            resolved = arch.get_active_arch()
            active.setdefault(resolved.name, resolved)
        return list(active.values())
