"""Evaluate legacy ``package.js`` declarations without executing them.

A declaration is a script that calls a small, fixed API::

    Package.describe({ name: "me:pkg", version: "1.0.0", summary: "..." });
    Npm.depends({ lodash: "4.17.21" });
    Package.onUse(function (api) {
      api.use(["tracker", "ddp"], "client");
      api.export("Thing");
      api.mainModule("main.js");
    });

The evaluator walks the tree-sitter tree and replays those calls against a
:class:`PackageApi`.  Arguments must be literals (strings, numbers,
booleans, arrays, objects, simple concatenation) or names bound to literals
earlier in the file; anything else raises :class:`DeclarationError`.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Protocol

from tree_sitter import Node

from esmport.errors import DeclarationError
from esmport.js.parser import parse_module, text

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(
    r"""Package\.describe\(\{[^}]+['"]?name['"]?\s*:\s*['"]([a-zA-Z0-9:._-]+)["']"""
)

_CALLBACK_TYPES = {"function_expression", "function", "arrow_function"}


class PackageApi(Protocol):
    """Receiver of the calls a declaration makes."""

    def describe(self, info: dict[str, Any]) -> None: ...

    def npm_depends(self, dependencies: dict[str, str]) -> None: ...

    def versions_from(self, release: Any) -> None: ...

    def use(self, packages: list[str], archs: list[str], opts: dict[str, Any], *, test: bool) -> None: ...

    def imply(self, packages: list[str], archs: list[str], *, test: bool) -> None: ...

    def export(self, symbols: list[str], archs: list[str], opts: dict[str, Any], *, test: bool) -> None: ...

    def add_files(self, files: list[str], archs: list[str], opts: dict[str, Any], *, test: bool) -> None: ...

    def add_assets(self, files: list[str], archs: list[str], *, test: bool) -> None: ...

    def main_module(self, file: str, archs: list[str], opts: dict[str, Any], *, test: bool) -> None: ...


def declared_name(source: str) -> str | None:
    """Cheap probe for the ``name`` given to ``Package.describe``."""
    match = _NAME_RE.search(source)
    return match.group(1) if match else None


class _Unknown:
    """Value of a binding whose initializer is not a literal."""

    def __init__(self, node: Node) -> None:
        self.node = node


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _split_archs_and_opts(archs: Any, opts: Any) -> tuple[list[str], dict[str, Any]]:
    """``api.use(pkgs, {weak: true})`` passes options where the archs would go."""
    if opts is None and isinstance(archs, dict):
        return [], dict(archs)
    return _as_list(archs), dict(opts or {})


def _decode_escape(sequence: str) -> str:
    try:
        return sequence.encode("utf-8").decode("unicode_escape")
    except UnicodeDecodeError:
        return sequence[1:]


class _Evaluator:
    def __init__(self, api: PackageApi, path: Path | str | None) -> None:
        self.api = api
        self.path = path

    def _error(self, node: Node, message: str) -> DeclarationError:
        where = f"{self.path}:" if self.path else "line "
        return DeclarationError(f"{where}{node.start_point[0] + 1}: {message}")

    # statements

    def run(self, root: Node) -> None:
        env: dict[str, Any] = {}
        for statement in root.named_children:
            self._statement(statement, env, callback=None)

    def _statement(self, node: Node, env: dict[str, Any], callback: tuple[str, bool] | None) -> None:
        if node.type == "comment" or node.type == "empty_statement":
            return
        if node.type in ("lexical_declaration", "variable_declaration"):
            self._declare(node, env)
            return
        if node.type == "expression_statement":
            expression = node.named_children[0] if node.named_children else None
            if expression is not None and expression.type == "call_expression":
                if callback is None:
                    self._top_level_call(expression, env)
                else:
                    self._api_call(expression, env, *callback)
                return
        logger.debug("%s: skipping %s at line %d", self.path, node.type, node.start_point[0] + 1)

    def _declare(self, node: Node, env: dict[str, Any]) -> None:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            name = declarator.child_by_field_name("name")
            value = declarator.child_by_field_name("value")
            if name is None or name.type != "identifier":
                continue
            if value is None:
                env[text(name)] = None
                continue
            try:
                env[text(name)] = self.value(value, env)
            except DeclarationError:
                env[text(name)] = _Unknown(value)

    @staticmethod
    def _callee(call: Node) -> tuple[str, str] | None:
        function = call.child_by_field_name("function")
        if function is None or function.type != "member_expression":
            return None
        obj = function.child_by_field_name("object")
        prop = function.child_by_field_name("property")
        if obj is None or prop is None or obj.type != "identifier":
            return None
        return text(obj), text(prop)

    def _arguments(self, call: Node, env: dict[str, Any]) -> list[Any]:
        args = call.child_by_field_name("arguments")
        if args is None:
            return []
        return [self.value(arg, env) for arg in args.named_children if arg.type != "comment"]

    def _top_level_call(self, call: Node, env: dict[str, Any]) -> None:
        callee = self._callee(call)
        if callee is None:
            logger.debug("%s: skipping call at line %d", self.path, call.start_point[0] + 1)
            return
        target, method = callee
        if target == "Package" and method in ("onUse", "on_use", "onTest", "on_test"):
            self._callback(call, env, test=method in ("onTest", "on_test"))
        elif target == "Package" and method == "describe":
            args = self._arguments(call, env)
            info = args[0] if args else {}
            if not isinstance(info, dict):
                raise self._error(call, "Package.describe expects an object")
            self.api.describe(info)
        elif target == "Npm" and method == "depends":
            args = self._arguments(call, env)
            if args and isinstance(args[0], dict):
                self.api.npm_depends(args[0])
        elif target in ("Package", "Npm", "Cordova"):
            # registerBuildPlugin, Npm.strip, Cordova.depends and friends
            logger.debug("%s: ignoring %s.%s", self.path, target, method)
        else:
            logger.debug("%s: skipping call to %s.%s", self.path, target, method)

    def _callback(self, call: Node, env: dict[str, Any], *, test: bool) -> None:
        args = call.child_by_field_name("arguments")
        function = next(
            (arg for arg in (args.named_children if args else []) if arg.type in _CALLBACK_TYPES),
            None,
        )
        if function is None:
            raise self._error(call, "Package.onUse/onTest expects a function")
        param = function.child_by_field_name("parameter")
        if param is None:
            params = function.child_by_field_name("parameters")
            idents = [p for p in (params.named_children if params else []) if p.type == "identifier"]
            param = idents[0] if idents else None
        if param is None:
            return
        body = function.child_by_field_name("body")
        if body is None or body.type != "statement_block":
            return
        scope = dict(env)
        for statement in body.named_children:
            self._statement(statement, scope, callback=(text(param), test))

    def _api_call(self, call: Node, env: dict[str, Any], api_name: str, test: bool) -> None:
        callee = self._callee(call)
        if callee is None or callee[0] != api_name:
            logger.debug("%s: skipping call at line %d", self.path, call.start_point[0] + 1)
            return
        method = callee[1]
        args = self._arguments(call, env) + [None, None, None]
        first, second, third = args[0], args[1], args[2]

        if method == "versionsFrom":
            self.api.versions_from(first)
        elif method == "use":
            archs, opts = _split_archs_and_opts(second, third)
            self.api.use([str(p) for p in _as_list(first)], archs, opts, test=test)
        elif method == "imply":
            self.api.imply([str(p) for p in _as_list(first)], _as_list(second), test=test)
        elif method == "export":
            archs, opts = _split_archs_and_opts(second, third)
            self.api.export([str(s) for s in _as_list(first)], archs, opts, test=test)
        elif method in ("addFiles", "add_files"):
            archs, opts = _split_archs_and_opts(second, third)
            self.api.add_files([str(f) for f in _as_list(first)], archs, opts, test=test)
        elif method == "addAssets":
            self.api.add_assets([str(f) for f in _as_list(first)], _as_list(second), test=test)
        elif method == "mainModule":
            archs, opts = _split_archs_and_opts(second, third)
            self.api.main_module(str(first), archs, opts, test=test)
        else:
            logger.debug("%s: ignoring api.%s", self.path, method)

    # literal values

    def value(self, node: Node, env: dict[str, Any]) -> Any:
        kind = node.type
        if kind == "string":
            parts = []
            for child in node.named_children:
                if child.type == "string_fragment":
                    parts.append(text(child))
                elif child.type == "escape_sequence":
                    parts.append(_decode_escape(text(child)))
            return "".join(parts)
        if kind == "template_string":
            parts = []
            for child in node.named_children:
                if child.type == "string_fragment":
                    parts.append(text(child))
                elif child.type == "escape_sequence":
                    parts.append(_decode_escape(text(child)))
                elif child.type == "template_substitution":
                    inner = child.named_children[0]
                    parts.append(str(self.value(inner, env)))
            return "".join(parts)
        if kind == "number":
            raw = text(node).replace("_", "")
            try:
                return int(raw, 0)
            except ValueError:
                return float(raw)
        if kind == "true":
            return True
        if kind == "false":
            return False
        if kind in ("null", "undefined"):
            return None
        if kind == "parenthesized_expression":
            return self.value(node.named_children[0], env)
        if kind == "array":
            items: list[Any] = []
            for child in node.named_children:
                if child.type == "comment":
                    continue
                if child.type == "spread_element":
                    items.extend(_as_list(self.value(child.named_children[0], env)))
                else:
                    items.append(self.value(child, env))
            return items
        if kind == "object":
            result: dict[str, Any] = {}
            for child in node.named_children:
                if child.type == "pair":
                    key = child.child_by_field_name("key")
                    key_value = self.value(key, env) if key.type in ("string", "number") else text(key)
                    result[str(key_value)] = self.value(child.child_by_field_name("value"), env)
                elif child.type == "shorthand_property_identifier":
                    result[text(child)] = self._lookup(child, env)
                elif child.type == "spread_element":
                    spread = self.value(child.named_children[0], env)
                    if isinstance(spread, dict):
                        result.update(spread)
            return result
        if kind == "identifier":
            return self._lookup(node, env)
        if kind == "member_expression":
            obj = self.value(node.child_by_field_name("object"), env)
            prop = text(node.child_by_field_name("property"))
            if isinstance(obj, dict) and prop in obj:
                return obj[prop]
            raise self._error(node, f"cannot evaluate property {prop!r}")
        if kind == "binary_expression":
            operator = node.child_by_field_name("operator")
            if operator is not None and operator.type == "+":
                left = self.value(node.child_by_field_name("left"), env)
                right = self.value(node.child_by_field_name("right"), env)
                if isinstance(left, str) or isinstance(right, str):
                    return f"{_js_str(left)}{_js_str(right)}"
                return left + right
        raise self._error(node, f"unsupported expression {text(node)[:40]!r}")

    def _lookup(self, node: Node, env: dict[str, Any]) -> Any:
        name = text(node)
        if name not in env:
            raise self._error(node, f"unknown name {name!r}")
        value = env[name]
        if isinstance(value, _Unknown):
            raise self._error(node, f"{name!r} is not bound to a literal value")
        return value


def _js_str(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    return str(value)


def evaluate_declaration(source: str, api: PackageApi, *, path: Path | str | None = None) -> None:
    """Replay the declaration in *source* against *api*."""
    tree = parse_module(source, path=path)
    _Evaluator(api, path).run(tree.root_node)
