"""Filesystem access for the async conversion pipeline.

Blocking calls run in worker threads so independent packages interleave.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path

# Never copied from a package's source folder into its output.
_COPY_IGNORE = shutil.ignore_patterns(".npm", "package.json")


async def read_text(path: Path) -> str:
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


async def write_text(path: Path, content: str) -> None:
    def _write() -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    await asyncio.to_thread(_write)


async def read_json(path: Path) -> dict:
    return json.loads(await read_text(path))


async def write_json(path: Path, data: dict) -> None:
    await write_text(path, json.dumps(data, indent=2) + "\n")


async def exists(path: Path) -> bool:
    return await asyncio.to_thread(path.exists)


async def read_json_if_exists(path: Path) -> dict | None:
    """Parsed JSON at *path*, or ``None`` when the file is absent."""
    try:
        return await read_json(path)
    except FileNotFoundError:
        return None


async def copy_tree(src: Path, dest: Path) -> None:
    def _copy() -> None:
        real = src.resolve()
        shutil.copytree(real, dest, ignore=_COPY_IGNORE, dirs_exist_ok=True)

    await asyncio.to_thread(_copy)


async def copy_file(src: Path, dest: Path) -> None:
    def _copy() -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest)

    await asyncio.to_thread(_copy)


async def remove_tree(path: Path) -> None:
    await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)


async def list_dirs(path: Path) -> list[Path]:
    def _list() -> list[Path]:
        try:
            return sorted(child for child in path.iterdir() if child.is_dir())
        except (FileNotFoundError, NotADirectoryError):
            return []

    return await asyncio.to_thread(_list)
