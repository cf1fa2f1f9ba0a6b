from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .config import ConfigError, load_defaults, parse_delay
from .runner import RunConfig, RunSummary, run_blocks
from .scan.markdown import README_NAME, CodeBlock, MalformedDocument, extract_blocks, find_readmes, load_source
from .scan.select import SelectionError, select_blocks


USAGE_ERROR_STATUS = 2
READ_ERROR_STATUS = 1

Document = Tuple[Path, List[CodeBlock]]


def log(msg: str) -> None:
    print(f"[mdexec] {msg}", file=sys.stderr, flush=True)


def write_report(path: Path, files: List[Dict[str, Any]], exit_status: int, error: Optional[str] = None) -> None:
    """Write the run report; ``files`` holds one summary per document that ran."""
    data = {
        "ok": exit_status == 0,
        "exit_status": exit_status,
        "error": error,
        "files": files,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _directory(value: str) -> Path:
    p = Path(value)
    if not p.is_dir():
        raise argparse.ArgumentTypeError(f"not an existing directory: {value}")
    return p.resolve()


def _delay(value: str) -> float:
    try:
        return parse_delay(value)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e))


def _regex(value: str) -> Pattern[str]:
    try:
        return re.compile(value)
    except re.error as e:
        raise argparse.ArgumentTypeError(f"invalid regular expression {value!r}: {e}")


def _target_files(args: argparse.Namespace) -> List[Path]:
    files = [Path(f) for f in args.file or []]
    if args.recursive:
        files.extend(find_readmes(args.workdir or Path.cwd()))
    elif not files:
        files = [Path(README_NAME)]
    seen = set()
    unique: List[Path] = []
    for f in files:
        key = f.resolve()
        if key not in seen:
            seen.add(key)
            unique.append(f)
    return unique


def _select(blocks: List[CodeBlock], args: argparse.Namespace) -> List[CodeBlock]:
    return select_blocks(
        blocks,
        execute_from=args.execute_from,
        execute_until=args.execute_until,
        skip=args.skip_commands,
    )


def _print_listing(path: Path, blocks: List[CodeBlock]) -> None:
    print(f"# {path}")
    for b in blocks:
        print(f"[{b.index}] line {b.line}")
        for line in b.text.split("\n"):
            print(f"    {line}")


def _report_failure(path: Path, summary: RunSummary) -> None:
    failed = summary.failed
    if failed is None:
        return
    where = f"{path}:{failed.block.line} (block {failed.block.index})"
    if failed.launch_error is not None:
        log(f"Could not launch {where}: {failed.launch_error}")
    elif failed.outcome is not None and failed.outcome.signaled:
        log(f"Command at {where} was killed by signal {failed.outcome.signal}")
    elif failed.outcome is not None:
        log(f"Command at {where} exited with status {failed.outcome.returncode}")


def cmd_run(args: argparse.Namespace) -> int:
    def finish(rc: int, files: List[Dict[str, Any]], error: Optional[str] = None) -> int:
        if args.report:
            write_report(Path(args.report), files, rc, error)
        return rc

    try:
        defaults = load_defaults()
    except ConfigError as e:
        msg = f"Invalid environment configuration: {e}"
        finish(USAGE_ERROR_STATUS, [], msg)
        raise SystemExit(msg)

    delay = args.delay if args.delay is not None else defaults.delay
    shell = args.shell or defaults.shell
    strict = args.strict or defaults.strict

    # Every document is read and parsed before anything runs.
    documents: List[Document] = []
    for path in _target_files(args):
        try:
            source = load_source(path)
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Failed to read markdown file {path}: {e}"
            finish(READ_ERROR_STATUS, [], msg)
            raise SystemExit(msg)
        try:
            documents.append((path, _select(extract_blocks(source), args)))
        except (MalformedDocument, SelectionError) as e:
            log(f"{e}")
            return finish(USAGE_ERROR_STATUS, [], str(e))

    if not documents:
        log("No markdown files found")

    if args.list:
        for path, blocks in documents:
            _print_listing(path, blocks)
        return 0

    def _on_event(kind: str, payload: Dict[str, Any]) -> None:
        block: CodeBlock = payload["block"]
        if kind == "block_start" and not args.quiet:
            print("---", flush=True)
            print(f"$ {block.first_line}", flush=True)
        elif kind == "delay" and not args.quiet:
            log(f"Waiting {payload['seconds']}s before block {block.index}…")

    files: List[Dict[str, Any]] = []
    for path, blocks in documents:
        if not blocks:
            log(f"No shell blocks to run in {path}")
        config = RunConfig(markdown_path=path, workdir=args.workdir, delay=delay, shell=shell, errexit=strict)
        summary = run_blocks(blocks, config, on_event=_on_event)
        files.append({"path": str(path), **summary.to_dict()})
        if not summary.ok:
            _report_failure(path, summary)
            return finish(summary.exit_status(), files)
    return finish(0, files)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mdexec",
        description="Run the ```shell blocks of a markdown file in order, stopping at the first failure",
    )
    p.add_argument("-f", "--file", action="append", default=None,
                   help="Markdown file to run; repeat for several (default: README.md)")
    p.add_argument("-r", "--recursive", action="store_true",
                   help="Also run every README.md below the working directory, shallowest first")
    p.add_argument("-e", "--execute-from", default=None,
                   help="Start at the first block containing this line; earlier blocks are ignored")
    p.add_argument("-u", "--execute-until", default=None,
                   help="Stop after the first block containing this line; later blocks are ignored")
    p.add_argument("-s", "--skip-commands", type=_regex, default=None,
                   help="Skip every block matching this regular expression")
    p.add_argument("-C", "--workdir", type=_directory, default=None,
                   help="Directory to run commands in (default: current directory)")
    p.add_argument("-d", "--delay", type=_delay, default=None,
                   help="Seconds to wait between commands (default: $MDEXEC_DELAY or 0)")
    p.add_argument("--shell", default=None, help="Shell interpreter (default: $MDEXEC_SHELL or /bin/sh)")
    p.add_argument("--strict", action="store_true",
                   help="Run each block with 'set -e' so any failing line fails the block")
    p.add_argument("-q", "--quiet", action="store_true", help="Do not echo commands before running them")
    p.add_argument("--list", action="store_true", help="Print the selected blocks without running them")
    p.add_argument("--report", default=None, help="Write a JSON report of the run to this path")
    p.set_defaults(func=cmd_run)
    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(args.func(args))
