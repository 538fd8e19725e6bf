"""Rewrite package globals into explicit imports and globals-object accesses.

A free identifier in a package file is resolved in one of two ways:

* imported from another package that exports it (``import { Tracker } from
  "@meteor/tracker"``), leaving the reference itself untouched, or
* supplied by the package's own ``__globals.js`` object, in which case every
  value-position reference becomes ``__package_globals__.Name``.

Rewriting works on byte spans reported by :mod:`esmport.js.scope`, so
formatting and comments outside the rewritten identifiers are preserved.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from esmport.js.parser import parse_module
from esmport.js.scope import EXPORT_SPECIFIER, IDENTIFIER, analyze

PACKAGE_GLOBALS = "__package_globals__"
GLOBALS_FILE = "__globals.js"

# Names always routed through the globals object when a file uses them.
SPECIAL_GLOBALS = frozenset({"exports", "module", "require", "Npm", "Assets"})


@dataclass
class GlobalResolution:
    """Where each qualifying free identifier of one file comes from."""

    globals_module: str = f"./{GLOBALS_FILE}"
    globals: set[str] = field(default_factory=set)
    imports: dict[str, set[str]] = field(default_factory=dict)
    namespace_imports: set[str] = field(default_factory=set)
    default_imports: set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not self.globals and not any(self.imports.values())


def globals_module_specifier(file: str | PurePosixPath) -> str:
    """Relative specifier of the package's globals module from *file*.

    *file* is relative to the package root (``lib/a.js`` -> ``../__globals.js``).
    """
    parts = [part for part in PurePosixPath(file).parent.parts if part not in (".", "")]
    prefix = "../" * len(parts) or "./"
    return f"{prefix}{GLOBALS_FILE}"


def _is_relative(specifier: str) -> bool:
    return specifier.startswith(".")


def resolve_file_globals(
    names: Iterable[str],
    archs: Collection[str],
    imported_by_arch: Mapping[str, Mapping[str, str]],
    package_globals: Collection[str],
    *,
    globals_module: str = f"./{GLOBALS_FILE}",
    is_common_package: Callable[[str], bool] | None = None,
    exports_for: Callable[[str, str], Collection[str]] | None = None,
) -> GlobalResolution:
    """Decide the source of every free name of one file.

    *imported_by_arch* maps each leaf architecture to ``{name: specifier}``
    for globals other packages provide.  A file built for a single
    architecture consults only that architecture's map; a file shared by
    several consults any of them.  Names assigned anywhere in the package
    (*package_globals*) always stay on the globals object.
    """
    resolution = GlobalResolution(globals_module=globals_module)
    single = next(iter(archs)) if len(archs) == 1 else None
    for name in sorted(set(names)):
        source = None
        if name not in package_globals:
            if single is not None and single in imported_by_arch:
                source = imported_by_arch[single].get(name)
            else:
                for arch_map in imported_by_arch.values():
                    if name in arch_map:
                        source = arch_map[name]
                        break
        if source is not None:
            resolution.imports.setdefault(source, set()).add(name)
        elif name in package_globals or name in SPECIAL_GLOBALS:
            resolution.globals.add(name)

    for source, imported in resolution.imports.items():
        if _is_relative(source):
            continue
        if is_common_package is not None and is_common_package(source):
            resolution.default_imports.add(source)
        elif len(archs) > 1 and exports_for is not None:
            everywhere = all(
                name in exports_for(source, arch) for arch in archs for name in imported
            )
            if not everywhere:
                resolution.namespace_imports.add(source)
    return resolution


def import_statements(
    resolution: GlobalResolution,
    globals_used: Collection[str],
    imports: Mapping[str, list[str]],
    *,
    is_common: bool = False,
) -> list[str]:
    """Import lines for a rewritten file; package imports precede relative ones."""
    sources = sorted(imports, key=lambda source: (_is_relative(source), source))
    lines = []
    for index, source in enumerate(sources):
        names = ", ".join(imports[source])
        alias = f"__import__{index}__"
        if is_common:
            lines.append(f'const {{ {names} }} = require("{source}");')
        elif source in resolution.default_imports:
            lines.append(f'import {alias} from "{source}";\nconst {{ {names} }} = {alias};')
        elif source in resolution.namespace_imports:
            lines.append(f'import * as {alias} from "{source}";\nconst {{ {names} }} = {alias};')
        else:
            lines.append(f'import {{ {names} }} from "{source}";')
    if globals_used:
        if is_common:
            lines.append(f'const {PACKAGE_GLOBALS} = require("{resolution.globals_module}");')
        else:
            lines.append(f'import {PACKAGE_GLOBALS} from "{resolution.globals_module}";')
    return lines


def _apply_edits(data: bytes, edits: list[tuple[int, int, str]]) -> bytes:
    for start, end, replacement in sorted(edits, reverse=True):
        data = data[:start] + replacement.encode("utf-8") + data[end:]
    return data


def rewrite_module(
    source: str,
    resolution: GlobalResolution,
    *,
    is_common: bool = False,
    path=None,
    warned: set[str] | None = None,
) -> str:
    """Return *source* with its package globals made explicit.

    Only names still free in *source* are rewritten, so running this on its
    own output with the same resolution returns the input unchanged.
    """
    info = analyze(parse_module(source, path=path, warned=warned), is_common=is_common)
    globals_used = resolution.globals & info.free
    imports = {
        specifier: sorted(names & info.free)
        for specifier, names in resolution.imports.items()
    }
    imports = {specifier: names for specifier, names in imports.items() if names}
    if not globals_used and not imports:
        return source

    edits = []
    # export clause statement start -> names needing a local binding there
    bindings: dict[int, list[str]] = {}
    for ref in info.references:
        if ref.name not in globals_used:
            continue
        if ref.kind == EXPORT_SPECIFIER:
            # bound once, before the first clause exporting it
            if not any(ref.name in names for names in bindings.values()):
                bindings.setdefault(ref.anchor_byte, []).append(ref.name)
            continue
        access = f"{PACKAGE_GLOBALS}.{ref.name}"
        if ref.kind != IDENTIFIER:
            # shorthand `{ x }` expands to `{ x: __package_globals__.x }`
            access = f"{ref.name}: {access}"
        edits.append((ref.start_byte, ref.end_byte, access))
    for anchor, names in bindings.items():
        declarators = ", ".join(f"{name} = {PACKAGE_GLOBALS}.{name}" for name in names)
        edits.append((anchor, anchor, f"const {declarators};\n"))

    body = _apply_edits(source.encode("utf-8"), edits).decode("utf-8")
    header = import_statements(resolution, globals_used, imports, is_common=is_common)
    return "\n".join([*header, body])
