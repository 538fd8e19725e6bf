"""tree-sitter JavaScript parsing with strict and lenient modes."""

from __future__ import annotations

import logging
from pathlib import Path

import tree_sitter_javascript as tsjs
from tree_sitter import Language, Node, Parser, Tree

from esmport.errors import JsSyntaxError

logger = logging.getLogger(__name__)

LANGUAGE = Language(tsjs.language())


def text(node: Node) -> str:
    return node.text.decode("utf-8")


def _first_error(node: Node) -> Node | None:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_error or current.is_missing:
            return current
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


def _syntax_error(root: Node, path: Path | str | None, mode: str) -> JsSyntaxError:
    node = _first_error(root) or root
    if node.is_missing:
        message = f"missing {node.type}"
    else:
        snippet = text(node).splitlines()[0][:40] if node.text else ""
        message = f"unexpected {snippet!r}" if snippet else "syntax error"
    return JsSyntaxError(
        message,
        path=path,
        line=node.start_point[0] + 1,
        column=node.start_point[1] + 1,
        mode=mode,
    )


def parse(source: str | bytes, *, path: Path | str | None = None, loose: bool = False) -> Tree:
    """Parse *source* as a module.

    Strict mode rejects any syntax error.  Loose mode keeps tree-sitter's
    error recovery and only fails when nothing usable was recovered.
    """
    data = source.encode("utf-8") if isinstance(source, str) else source
    tree = Parser(LANGUAGE).parse(data)
    root = tree.root_node
    if not root.has_error:
        return tree
    if not loose:
        raise _syntax_error(root, path, "strict")
    named = root.named_children
    if root.type != "program" or (named and all(child.is_error for child in named)):
        raise _syntax_error(root, path, "loose")
    return tree


def parse_module(
    source: str | bytes,
    *,
    path: Path | str | None = None,
    warned: set[str] | None = None,
) -> Tree:
    """Strict parse, retrying leniently when the source has local syntax errors.

    *warned* collects the paths already reported, so a file parsed several
    times in one conversion warns once.  Without it every fallback warns.
    """
    try:
        return parse(source, path=path)
    except JsSyntaxError as exc:
        key = str(path)
        if warned is None or key not in warned:
            if warned is not None:
                warned.add(key)
            logger.warning("%s; falling back to lenient parsing", exc)
        return parse(source, path=path, loose=True)
