from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union


SHELL_TAG = "shell"
README_NAME = "README.md"

# backtick run, tag glued to it, then an optional info string; no backticks after the run
_FENCE = re.compile(r"^(`{3,})([^\s`]*)([^`]*)$")


class MalformedDocument(ValueError):
    """Raised when a fenced block is opened but never closed."""

    def __init__(self, path: Union[str, Path], line: int) -> None:
        self.path = str(path)
        self.line = line
        super().__init__(f"{self.path}:{line}: code fence is never closed")


@dataclass(frozen=True)
class MarkdownSource:
    text: str
    path: str = "<string>"


@dataclass(frozen=True)
class CodeBlock:
    index: int
    text: str
    line: int

    @property
    def first_line(self) -> str:
        return self.text.split("\n", 1)[0]


@dataclass(frozen=True)
class _Fence:
    length: int
    tag: str
    rest: str

    def closes(self, opening: "_Fence") -> bool:
        return self.length >= opening.length and not self.tag and not self.rest.strip()


def _parse_fence(line: str) -> Optional[_Fence]:
    m = _FENCE.match(line)
    if not m:
        return None
    return _Fence(length=len(m.group(1)), tag=m.group(2), rest=m.group(3))


def _lines(text: str) -> List[str]:
    # only \n ends a line; form feeds and friends belong to the content
    return [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]


def load_source(path: Union[str, Path]) -> MarkdownSource:
    p = Path(path)
    # newline="" keeps the file's bytes; _lines deals with CRLF
    with p.open("r", encoding="utf-8", newline="") as f:
        return MarkdownSource(text=f.read(), path=str(p))


def find_readmes(root: Union[str, Path], name: str = README_NAME) -> List[Path]:
    """Every ``name`` file under ``root``, shallowest first, then by path.

    Hidden directories (``.git``, ``.venv``, ...) are not searched.
    """
    base = Path(root)
    found: List[Path] = []
    for p in base.rglob(name):
        if not p.is_file():
            continue
        rel = p.relative_to(base)
        if any(part.startswith(".") for part in rel.parts[:-1]):
            continue
        found.append(p)
    return sorted(found, key=lambda p: (len(p.relative_to(base).parts), p.relative_to(base).as_posix()))


def extract_blocks(source: MarkdownSource) -> List[CodeBlock]:
    """Return the ``shell`` blocks of ``source`` in document order.

    Fences must start at column 0. A block closes on a bare fence at least as
    long as the one that opened it; every other line up to that point,
    fence-looking lines included, is block content. Blocks with any other tag,
    or no tag, are skipped. An unclosed fence raises MalformedDocument.
    """
    blocks: List[CodeBlock] = []
    opening: Optional[_Fence] = None
    opening_line = 0
    body: List[str] = []

    for lineno, line in enumerate(_lines(source.text), start=1):
        fence = _parse_fence(line)
        if opening is None:
            if fence is not None:
                opening = fence
                opening_line = lineno
                body = []
            continue
        if fence is not None and fence.closes(opening):
            if opening.tag == SHELL_TAG:
                blocks.append(CodeBlock(index=len(blocks), text="\n".join(body), line=opening_line))
            opening = None
            continue
        body.append(line)

    if opening is not None:
        raise MalformedDocument(source.path, opening_line)
    return blocks
