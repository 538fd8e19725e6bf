"""Lexical scope analysis: find the free identifiers of a module.

A reference is *free* when no enclosing scope of the module declares its
name.  Under the legacy package model a free name is either a host global
(filtered out via :mod:`esmport.js.hostglobals`) or a package global shared
implicitly between files.

Scoping follows module semantics: ``var`` hoists to the nearest function
(or module) scope; ``let``, ``const``, ``class`` and function declarations
bind in the enclosing block; imports bind at module level.  Names are
resolved only after the whole tree has been walked, so hoisting and
temporal-dead-zone use both resolve to the declaration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tree_sitter import Node, Tree

from esmport.js.hostglobals import is_host_global
from esmport.js.parser import parse_module, text

# Reference kinds, used by the rewriter to pick a replacement form.
IDENTIFIER = "identifier"
SHORTHAND_PROPERTY = "shorthand_property"
SHORTHAND_PATTERN = "shorthand_pattern"
EXPORT_SPECIFIER = "export_specifier"

_FUNCTION_TYPES = {
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
}

_VISIT, _BIND, _ASSIGN = range(3)


@dataclass(eq=False)
class Scope:
    kind: str  # "module", "function", "block", "catch", "class"
    parent: Scope | None = None
    names: set[str] = field(default_factory=set)

    def function_scope(self) -> Scope:
        scope = self
        while scope.kind not in ("function", "module") and scope.parent is not None:
            scope = scope.parent
        return scope

    def declares(self, name: str) -> bool:
        scope: Scope | None = self
        while scope is not None:
            if name in scope.names:
                return True
            scope = scope.parent
        return False


@dataclass
class Reference:
    """A value-position occurrence of a free identifier."""

    name: str
    start_byte: int
    end_byte: int
    kind: str
    is_write: bool
    line: int
    # start of the enclosing ``export { ... }`` statement for export specifiers
    anchor_byte: int | None = None


@dataclass
class ModuleScopeInfo:
    """Free-identifier report for one module.

    ``free`` holds every free name after host globals are removed,
    ``assigned`` the subset that is written somewhere in the module, and
    ``references`` each qualifying occurrence in source order.
    """

    free: set[str] = field(default_factory=set)
    assigned: set[str] = field(default_factory=set)
    references: list[Reference] = field(default_factory=list)


class _ScopeBuilder:
    """Walks a tree iteratively, recording declarations and candidate references."""

    def __init__(self) -> None:
        self.module = Scope("module")
        self.candidates: list[tuple[Node, Scope, str, bool, Node | None]] = []
        self._work: list[tuple[int, Node, Scope, Scope | None]] = []
        self._handlers = {
            "import_statement": self._import,
            "export_statement": self._export,
            "variable_declaration": self._var,
            "lexical_declaration": self._lexical,
            "function_declaration": self._function_declaration,
            "generator_function_declaration": self._function_declaration,
            "function_expression": self._function,
            "function": self._function,
            "generator_function": self._function,
            "arrow_function": self._arrow,
            "method_definition": self._method,
            "class_declaration": self._class_declaration,
            "class": self._class,
            "field_definition": self._field,
            "class_static_block": self._static_block,
            "statement_block": self._block,
            "switch_body": self._block,
            "for_statement": self._for,
            "for_in_statement": self._for_in,
            "catch_clause": self._catch,
            "assignment_expression": self._assignment,
            "augmented_assignment_expression": self._assignment,
            "update_expression": self._update,
            "member_expression": self._member,
            "pair": self._pair,
            "computed_property_name": self._children,
        }

    def run(self, root: Node) -> None:
        self._children(root, self.module)
        while self._work:
            mode, node, scope, target = self._work.pop()
            if mode == _VISIT:
                self._visit(node, scope)
            elif mode == _BIND:
                self._bind(node, scope, target)
            else:
                self._assign(node, scope)

    # scheduling helpers

    def _push(self, node: Node | None, scope: Scope) -> None:
        if node is not None:
            self._work.append((_VISIT, node, scope, None))

    def _push_bind(self, node: Node | None, scope: Scope, target: Scope) -> None:
        if node is not None:
            self._work.append((_BIND, node, scope, target))

    def _push_assign(self, node: Node | None, scope: Scope) -> None:
        if node is not None:
            self._work.append((_ASSIGN, node, scope, None))

    def _children(self, node: Node, scope: Scope) -> None:
        for child in node.named_children:
            self._push(child, scope)

    def _reference(
        self, node: Node, scope: Scope, kind: str, is_write: bool, anchor: Node | None = None
    ) -> None:
        self.candidates.append((node, scope, kind, is_write, anchor))

    # expression and statement visitor

    def _visit(self, node: Node, scope: Scope) -> None:
        kind = node.type
        if kind == "identifier":
            self._reference(node, scope, IDENTIFIER, False)
            return
        if kind == "shorthand_property_identifier":
            self._reference(node, scope, SHORTHAND_PROPERTY, False)
            return
        handler = self._handlers.get(kind)
        if handler is None:
            self._children(node, scope)
        else:
            handler(node, scope)

    def _import(self, node: Node, scope: Scope) -> None:
        for clause in node.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "identifier":
                    self.module.names.add(text(part))
                elif part.type == "namespace_import":
                    for ident in part.named_children:
                        if ident.type == "identifier":
                            self.module.names.add(text(ident))
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type != "import_specifier":
                            continue
                        local = spec.child_by_field_name("alias") or spec.child_by_field_name("name")
                        if local is not None and local.type == "identifier":
                            self.module.names.add(text(local))

    def _export(self, node: Node, scope: Scope) -> None:
        reexport = node.child_by_field_name("source") is not None
        for child in node.named_children:
            if child.type == "export_clause":
                if not reexport:
                    self._export_clause(child, node, scope)
                continue
            if child.type in ("string", "namespace_export", "comment"):
                continue
            self._push(child, scope)

    def _export_clause(self, clause: Node, statement: Node, scope: Scope) -> None:
        """``export { Foo }`` reads ``Foo``; the statement anchors the binding the rewriter adds."""
        for spec in clause.named_children:
            if spec.type != "export_specifier":
                continue
            local = spec.child_by_field_name("name")
            if local is not None and local.type == "identifier":
                self._reference(local, scope, EXPORT_SPECIFIER, False, anchor=statement)

    def _declarators(self, node: Node, scope: Scope, target: Scope) -> None:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            self._push_bind(declarator.child_by_field_name("name"), scope, target)
            self._push(declarator.child_by_field_name("value"), scope)

    def _var(self, node: Node, scope: Scope) -> None:
        self._declarators(node, scope, scope.function_scope())

    def _lexical(self, node: Node, scope: Scope) -> None:
        self._declarators(node, scope, scope)

    def _function_body(self, node: Node, function_scope: Scope) -> None:
        params = node.child_by_field_name("parameters")
        if params is not None:
            for param in params.named_children:
                self._push_bind(param, function_scope, function_scope)
        body = node.child_by_field_name("body")
        if body is None:
            return
        if body.type == "statement_block":
            self._children(body, function_scope)
        else:
            self._push(body, function_scope)

    def _function_declaration(self, node: Node, scope: Scope) -> None:
        name = node.child_by_field_name("name")
        if name is not None:
            scope.names.add(text(name))
        inner = Scope("function", scope, {"arguments"})
        self._function_body(node, inner)

    def _function(self, node: Node, scope: Scope) -> None:
        inner = Scope("function", scope, {"arguments"})
        name = node.child_by_field_name("name")
        if name is not None:
            inner.names.add(text(name))
        self._function_body(node, inner)

    def _arrow(self, node: Node, scope: Scope) -> None:
        inner = Scope("function", scope)
        param = node.child_by_field_name("parameter")
        if param is not None:
            inner.names.add(text(param))
        self._function_body(node, inner)

    def _method(self, node: Node, scope: Scope) -> None:
        name = node.child_by_field_name("name")
        if name is not None and name.type == "computed_property_name":
            self._push(name, scope)
        self._function_body(node, Scope("function", scope, {"arguments"}))

    def _class_parts(self, node: Node, outer: Scope, inner: Scope) -> None:
        for child in node.named_children:
            if child.type == "class_heritage":
                self._children(child, outer)
            elif child.type == "class_body":
                self._children(child, inner)
            elif child.type == "decorator":
                self._push(child, outer)

    def _class_declaration(self, node: Node, scope: Scope) -> None:
        name = node.child_by_field_name("name")
        if name is not None:
            scope.names.add(text(name))
        self._class_parts(node, scope, Scope("class", scope))

    def _class(self, node: Node, scope: Scope) -> None:
        inner = Scope("class", scope)
        name = node.child_by_field_name("name")
        if name is not None:
            inner.names.add(text(name))
        self._class_parts(node, scope, inner)

    def _field(self, node: Node, scope: Scope) -> None:
        prop = node.child_by_field_name("property")
        if prop is not None and prop.type == "computed_property_name":
            self._push(prop, scope)
        self._push(node.child_by_field_name("value"), Scope("function", scope))

    def _static_block(self, node: Node, scope: Scope) -> None:
        body = node.child_by_field_name("body")
        if body is not None:
            self._children(body, Scope("function", scope))

    def _block(self, node: Node, scope: Scope) -> None:
        self._children(node, Scope("block", scope))

    def _for(self, node: Node, scope: Scope) -> None:
        self._children(node, Scope("block", scope))

    def _for_in(self, node: Node, scope: Scope) -> None:
        inner = Scope("block", scope)
        kind = node.child_by_field_name("kind")
        left = node.child_by_field_name("left")
        if kind is None:
            self._push_assign(left, scope)
        elif kind.type == "var":
            self._push_bind(left, scope, scope.function_scope())
        else:
            self._push_bind(left, inner, inner)
        self._push(node.child_by_field_name("right"), scope)
        self._push(node.child_by_field_name("body"), inner)

    def _catch(self, node: Node, scope: Scope) -> None:
        inner = Scope("catch", scope)
        self._push_bind(node.child_by_field_name("parameter"), inner, inner)
        body = node.child_by_field_name("body")
        if body is not None:
            self._children(body, inner)

    def _assignment(self, node: Node, scope: Scope) -> None:
        self._push_assign(node.child_by_field_name("left"), scope)
        self._push(node.child_by_field_name("right"), scope)

    def _update(self, node: Node, scope: Scope) -> None:
        self._push_assign(node.child_by_field_name("argument"), scope)

    def _member(self, node: Node, scope: Scope) -> None:
        self._push(node.child_by_field_name("object"), scope)

    def _pair(self, node: Node, scope: Scope) -> None:
        key = node.child_by_field_name("key")
        if key is not None and key.type == "computed_property_name":
            self._push(key, scope)
        self._push(node.child_by_field_name("value"), scope)

    # declaration patterns

    def _bind(self, node: Node, scope: Scope, target: Scope) -> None:
        kind = node.type
        if kind in ("identifier", "shorthand_property_identifier_pattern"):
            target.names.add(text(node))
        elif kind in ("object_pattern", "array_pattern"):
            for child in node.named_children:
                self._push_bind(child, scope, target)
        elif kind == "pair_pattern":
            key = node.child_by_field_name("key")
            if key is not None and key.type == "computed_property_name":
                self._push(key, scope)
            self._push_bind(node.child_by_field_name("value"), scope, target)
        elif kind in ("assignment_pattern", "object_assignment_pattern"):
            self._push_bind(node.child_by_field_name("left"), scope, target)
            self._push(node.child_by_field_name("right"), scope)
        elif kind == "rest_pattern":
            for child in node.named_children:
                self._push_bind(child, scope, target)
        elif kind != "comment":
            self._push(node, scope)

    # assignment targets

    def _assign(self, node: Node, scope: Scope) -> None:
        kind = node.type
        if kind == "identifier":
            self._reference(node, scope, IDENTIFIER, True)
        elif kind == "shorthand_property_identifier_pattern":
            self._reference(node, scope, SHORTHAND_PATTERN, True)
        elif kind in ("object_pattern", "array_pattern", "parenthesized_expression", "rest_pattern"):
            for child in node.named_children:
                self._push_assign(child, scope)
        elif kind == "pair_pattern":
            key = node.child_by_field_name("key")
            if key is not None and key.type == "computed_property_name":
                self._push(key, scope)
            self._push_assign(node.child_by_field_name("value"), scope)
        elif kind in ("assignment_pattern", "object_assignment_pattern"):
            self._push_assign(node.child_by_field_name("left"), scope)
            self._push(node.child_by_field_name("right"), scope)
        elif kind != "comment":
            self._push(node, scope)


def analyze(tree: Tree, *, is_common: bool = False) -> ModuleScopeInfo:
    """Report the free identifiers of a parsed module.

    With *is_common* the module is treated as a two-argument CommonJS module
    and ``exports``, ``module`` and ``require`` are never free.
    """
    builder = _ScopeBuilder()
    builder.run(tree.root_node)

    info = ModuleScopeInfo()
    for node, scope, kind, is_write, anchor in builder.candidates:
        name = text(node)
        if scope.declares(name) or is_host_global(name, is_common=is_common):
            continue
        info.free.add(name)
        if is_write:
            info.assigned.add(name)
        info.references.append(
            Reference(
                name=name,
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                kind=kind,
                is_write=is_write,
                line=node.start_point[0] + 1,
                anchor_byte=anchor.start_byte if anchor is not None else None,
            )
        )
    info.references.sort(key=lambda ref: ref.start_byte)
    return info


def analyze_source(source: str | bytes, *, is_common: bool = False, path=None) -> ModuleScopeInfo:
    """Parse (with lenient fallback) and analyze *source*."""
    return analyze(parse_module(source, path=path), is_common=is_common)
