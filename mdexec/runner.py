from __future__ import annotations

import subprocess as sp
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import DEFAULT_SHELL
from .scan.markdown import CodeBlock


EventHandler = Callable[[str, Dict[str, Any]], None]

# same status a shell gives for a command it cannot run
LAUNCH_FAILURE_STATUS = 127


class LaunchFailure(RuntimeError):
    """A block's command could not be started at all."""

    def __init__(self, block: CodeBlock, reason: str) -> None:
        self.block = block
        self.reason = reason
        super().__init__(f"block {block.index} (line {block.line}) could not be launched: {reason}")


@dataclass(frozen=True)
class RunConfig:
    markdown_path: Path
    workdir: Optional[Path] = None
    delay: float = 0.0
    shell: str = DEFAULT_SHELL
    errexit: bool = False

    def cwd(self) -> Path:
        return self.workdir if self.workdir is not None else Path.cwd()


@dataclass(frozen=True)
class ExecutionOutcome:
    returncode: int
    signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExecutionOutcome":
        # subprocess reports death by signal N as -N
        if returncode < 0:
            return cls(returncode=returncode, signal=-returncode)
        return cls(returncode=returncode)

    @property
    def signaled(self) -> bool:
        return self.signal is not None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.signaled


@dataclass
class BlockResult:
    block: CodeBlock
    outcome: Optional[ExecutionOutcome] = None
    launch_error: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.launch_error is None and self.outcome is not None and self.outcome.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.block.index,
            "line": self.block.line,
            "command": self.block.text,
            "returncode": self.outcome.returncode if self.outcome else None,
            "signal": self.outcome.signal if self.outcome else None,
            "launch_error": self.launch_error,
            "duration": round(self.duration, 3),
        }


@dataclass
class RunSummary:
    results: List[BlockResult] = field(default_factory=list)

    @property
    def failed(self) -> Optional[BlockResult]:
        for res in self.results:
            if not res.ok:
                return res
        return None

    @property
    def ok(self) -> bool:
        return self.failed is None

    @property
    def outcome(self) -> Optional[ExecutionOutcome]:
        """Success, the first failing outcome, or None if that block never started."""
        failed = self.failed
        if failed is None:
            return ExecutionOutcome(returncode=0)
        return failed.outcome

    def exit_status(self) -> int:
        failed = self.failed
        if failed is None:
            return 0
        if failed.outcome is None:
            return LAUNCH_FAILURE_STATUS
        if failed.outcome.signal is not None:
            return 128 + failed.outcome.signal
        return failed.outcome.returncode

    def to_dict(self) -> Dict[str, Any]:
        failed = self.failed
        return {
            "ok": self.ok,
            "exit_status": self.exit_status(),
            "failed_index": failed.block.index if failed else None,
            "results": [r.to_dict() for r in self.results],
        }


def _script(block: CodeBlock, config: RunConfig) -> str:
    if config.errexit:
        return "set -e\n" + block.text
    return block.text


def run_block(block: CodeBlock, config: RunConfig) -> ExecutionOutcome:
    """Run one block through the shell and wait for it.

    stdout and stderr are inherited, so output streams straight to whatever
    the caller's streams point at. Raises LaunchFailure if the shell cannot be
    started (missing interpreter, bad working directory).
    """
    # anything we printed must land before the child's output
    sys.stdout.flush()
    sys.stderr.flush()
    try:
        # Documentation commands are run as written. nosec B602
        proc = sp.run(
            _script(block, config),
            shell=True,
            executable=config.shell,
            cwd=str(config.cwd()),
        )  # nosec B602
    except OSError as e:
        raise LaunchFailure(block, str(e))
    return ExecutionOutcome.from_returncode(proc.returncode)


def run_blocks(
    blocks: Sequence[CodeBlock],
    config: RunConfig,
    on_event: Optional[EventHandler] = None,
) -> RunSummary:
    """Run ``blocks`` in order, stopping at the first one that fails."""
    def emit(kind: str, payload: Dict[str, Any]) -> None:
        if on_event is not None:
            on_event(kind, payload)

    summary = RunSummary()
    for pos, block in enumerate(blocks):
        if pos > 0 and config.delay > 0:
            emit("delay", {"seconds": config.delay, "block": block})
            time.sleep(config.delay)

        emit("block_start", {"block": block})
        started = time.monotonic()
        try:
            outcome = run_block(block, config)
        except LaunchFailure as e:
            res = BlockResult(block=block, launch_error=e.reason, duration=time.monotonic() - started)
            summary.results.append(res)
            emit("launch_failed", {"block": block, "result": res, "error": e})
            break

        res = BlockResult(block=block, outcome=outcome, duration=time.monotonic() - started)
        summary.results.append(res)
        emit("block_done", {"block": block, "result": res})
        if not res.ok:
            break
    return summary
