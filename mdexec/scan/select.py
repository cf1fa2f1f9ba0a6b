from __future__ import annotations

from typing import List, Optional, Pattern, Sequence

from .markdown import CodeBlock


class SelectionError(ValueError):
    pass


def _matches(block: CodeBlock, wanted: str) -> bool:
    target = wanted.strip()
    return any(line.strip() == target for line in block.text.splitlines())


def _find(blocks: Sequence[CodeBlock], wanted: str, start: int = 0) -> int:
    for pos in range(start, len(blocks)):
        if _matches(blocks[pos], wanted):
            return pos
    raise SelectionError(f"No shell block contains the line: {wanted!r}")


def select_blocks(
    blocks: Sequence[CodeBlock],
    execute_from: Optional[str] = None,
    execute_until: Optional[str] = None,
    skip: Optional[Pattern[str]] = None,
) -> List[CodeBlock]:
    """Narrow ``blocks`` to the ones that should run.

    ``execute_from`` and ``execute_until`` are matched against whole lines of a
    block (surrounding whitespace ignored) and both bounds are inclusive.
    Blocks keep their original index so failures still point at the source.
    """
    start = 0
    stop = len(blocks)
    if execute_from is not None:
        start = _find(blocks, execute_from)
    if execute_until is not None:
        stop = _find(blocks, execute_until, start) + 1
    selected = list(blocks[start:stop])
    if skip is not None:
        selected = [b for b in selected if not skip.search(b.text)]
    return selected
