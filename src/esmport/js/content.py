"""Source text of the generated files of a converted package."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping

SERVER_ASSETS_FILE = "\n".join(
    [
        "import fs from 'fs';",
        "import path from 'path';",
        "const basePath = path.dirname(import.meta.url).replace('file:', '');",
        "export default {",
        "  getText(file) {",
        "    return fs.readFileSync(path.join(basePath, file)).toString();",
        "  },",
        "  absoluteFilePath(file) {",
        "    return path.join(basePath, file);",
        "  },",
        "};",
        "",
    ]
)

CLIENT_MODULE_FILE = "export default {\n  createRequire() { return require; },\n};\n"

SERVER_MODULE_FILE = 'export { default } from "node:module";\n'

NOOP_FILE_NAME = "__noop.js"

NOOP_FILE = "export {};\n"


def _braces(names: list[str]) -> str:
    return f"{{ {', '.join(names)} }}" if names else "{}"


def _is_absolute(specifier: str) -> bool:
    return specifier.startswith("@") or specifier.startswith("/")


def sort_imports(imports: Iterable[str]) -> list[str]:
    """Package and absolute imports first, relative files after; stable otherwise."""
    return sorted(imports, key=lambda specifier: not _is_absolute(specifier))


def import_lines(imports: Iterable[str], *, is_common: bool = False) -> str:
    if is_common:
        return "\n".join(f'require("{specifier}");' for specifier in sort_imports(imports))
    return "\n".join(f'import "{specifier}";' for specifier in sort_imports(imports))


def main_module_block(name: str, main_module: str, *, has_default: bool) -> str:
    lines = [
        f'import * as __package__ from "{main_module}";',
        f'Package._define("{name}", __package__);',
        f'export * from "{main_module}";',
    ]
    if has_default:
        lines.append(f'export {{ default }} from "{main_module}";')
    return "\n".join(lines)


def export_block(
    name: str,
    exports: list[str],
    provided: Mapping[str, Collection[str]],
    *,
    is_common: bool = False,
) -> str:
    """Declare a package's export surface for one architecture.

    *provided* maps a dependency's node name to the subset of *exports* it
    supplies; those are re-exported from the dependency, the rest come from
    the package's own globals object.
    """
    exports = list(dict.fromkeys(exports))
    imported = {symbol for symbols in provided.values() for symbol in symbols}
    local = [symbol for symbol in exports if symbol not in imported]
    definition = f'Package["{name}"] = {_braces(exports)};'
    lines = []
    if is_common:
        if local:
            lines.append('const __package_globals__ = require("./__globals.js");')
        for dependency, symbols in provided.items():
            lines.append(f'const {{ {", ".join(symbols)} }} = require("{dependency}");')
        lines.extend(f"exports.{symbol} = __package_globals__.{symbol};" for symbol in local)
        lines.extend(f"exports.{symbol} = {symbol};" for symbol in exports if symbol in imported)
        if local:
            lines.append(f"const {{ {', '.join(local)} }} = __package_globals__;")
        lines.append(definition)
        return "\n".join(lines)

    if local:
        lines.append('import __package_globals__ from "./__globals.js";')
    for dependency, symbols in provided.items():
        lines.append(f'import {{ {", ".join(symbols)} }} from "{dependency}";')
    if local:
        lines.append(f"const {{ {', '.join(local)} }} = __package_globals__;")
    lines.append(f"export {_braces(exports)};")
    lines.append(definition)
    return "\n".join(lines)


def entry_point(import_block: str, main_block: str | None, exports: str) -> str:
    return "\n".join(part for part in (import_block, main_block, exports) if part) + "\n"


def cjs_stub(name: str) -> str:
    return f'module.exports = Package["{name}"];\n'


def define_only(name: str) -> str:
    return f'Package["{name}"] = {{}};\n'


def globals_module(
    names: Iterable[str],
    *,
    is_common: bool = False,
    has_module: bool = False,
    has_npm: bool = False,
    has_require: bool = False,
    has_assets: bool = False,
) -> str:
    """The shared ``__globals.js`` object holding a package's own globals."""
    names = list(dict.fromkeys(names))
    if is_common:
        return "\n".join(f"module.exports.{name} = undefined;" for name in names) + "\n"

    lines = []
    if has_module or has_npm or has_require:
        lines.append('import module from "#module";')
    if has_assets:
        lines.append('import Assets from "#assets";')
    lines.append("export default {")
    lines.extend(f"  {name}: undefined," for name in names)
    if has_npm:
        lines.append("  Npm: { require: module.createRequire(import.meta.url) },")
    if has_module:
        lines.append("  module: { id: import.meta.url },")
    if has_require:
        lines.append("  require: module.createRequire(import.meta.url),")
    if has_assets:
        lines.append("  Assets,")
    lines.append("};")
    return "\n".join(lines) + "\n"
