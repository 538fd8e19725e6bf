"""Static import/export facts about a module."""

from __future__ import annotations

from pathlib import Path

from tree_sitter import Tree

from esmport.js.parser import text


def _string_value(node) -> str:
    for child in node.named_children:
        if child.type == "string_fragment":
            return text(child)
    return text(node)[1:-1]


def relative_imports(tree: Tree) -> list[str]:
    """Relative specifiers of top-level ``import`` and ``export ... from``, in order."""
    found: dict[str, None] = {}
    for node in tree.root_node.named_children:
        if node.type not in ("import_statement", "export_statement"):
            continue
        source = node.child_by_field_name("source")
        if source is None:
            continue
        specifier = _string_value(source)
        if specifier.startswith("./") or specifier.startswith("../"):
            found.setdefault(specifier)
    return list(found)


def has_default_export(tree: Tree) -> bool:
    for node in tree.root_node.named_children:
        if node.type != "export_statement":
            continue
        if any(child.type == "default" for child in node.children):
            return True
        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        if clause is None:
            continue
        for spec in clause.named_children:
            alias = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
            if alias is not None and text(alias) == "default":
                return True
    return False


def resolve_module_file(base: Path, specifier: str) -> Path | None:
    """Resolve a relative specifier the way the legacy loader does.

    ``x.js`` is tried first, then ``x`` itself, then ``x/index.js``.
    """
    target = (base.parent / specifier).resolve()
    with_ext = target.with_name(target.name + ".js")
    if with_ext.is_file():
        return with_ext
    if target.is_file():
        return target
    if target.is_dir() and (target / "index.js").is_file():
        return target / "index.js"
    return None


def exported_names(tree: Tree) -> list[str]:
    """Named exports of a module, ``default`` excluded."""
    names: dict[str, None] = {}
    for node in tree.root_node.named_children:
        if node.type != "export_statement":
            continue
        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            if declaration.type in ("lexical_declaration", "variable_declaration"):
                for declarator in declaration.named_children:
                    name = declarator.child_by_field_name("name")
                    if name is not None and name.type == "identifier":
                        names.setdefault(text(name))
            else:
                name = declaration.child_by_field_name("name")
                if name is not None:
                    names.setdefault(text(name))
            continue
        if node.child_by_field_name("source") is not None:
            continue
        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        if clause is None:
            continue
        for spec in clause.named_children:
            alias = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
            if alias is not None and text(alias) != "default":
                names.setdefault(text(alias))
    return list(names)
