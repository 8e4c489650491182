import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import structlog
from pydantic import ValidationError

from linetrack import __version__
from linetrack.config import load_config
from linetrack.diff import ChangeType, generate_diff_summary, group_consecutive_changes
from linetrack.drafts import process_lines_data
from linetrack.models import LineContent, LineRecord
from linetrack.similarity import text_similarity
from linetrack.tracking.matching import MatchingEngine
from linetrack.tracking.store import IdentityStore


def configure_logging(verbose: bool = False) -> None:
    # stdout carries the JSON results, so every log line goes to stderr
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(stream=sys.stderr, level=level, force=True)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _read_json(path: Path) -> Any:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except ValueError as e:
        print(f"Error parsing JSON from {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _load_records(path: Path) -> List[LineRecord]:
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("lines", [])
    try:
        return [LineRecord.model_validate(item) for item in data]
    except ValidationError as e:
        print(f"Error: {path} does not hold valid line records: {e}", file=sys.stderr)
        sys.exit(1)


def _load_contents(path: Path) -> List[LineContent]:
    """A JSON list of line contents, or a text file with one line per line."""
    if path.suffix.lower() == ".json":
        data = _read_json(path)
        if not isinstance(data, list):
            print(f"Error: {path} must hold a JSON list of line contents", file=sys.stderr)
            sys.exit(1)
        return data
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        return f.read().splitlines()


def _write_json(payload: Any, output: Optional[Path]) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Saved to {output}", file=sys.stderr)
    else:
        print(text)


def handle_reconcile(args):
    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    previous = _load_records(args.previous)
    contents = _load_contents(args.new)

    store = IdentityStore()
    store.seed(previous)
    engine = MatchingEngine(config.matching)
    result = engine.reconcile(contents, previous, content_map=store.content_to_identifier, user_id=args.user)

    _write_json([line.model_dump(mode="json") for line in result.lines], args.output)
    print(
        f"Stats: {result.stats.preserved} preserved, {result.stats.regenerated} regenerated, "
        f"strategies {json.dumps(result.stats.strategies, sort_keys=True)}",
        file=sys.stderr,
    )


def handle_diff(args):
    original = _load_records(args.original)
    suggested = _load_records(args.suggested)
    summary = generate_diff_summary(original, suggested)
    groups = group_consecutive_changes(summary.changed_lines)

    if args.json:
        payload = summary.model_dump(mode="json")
        payload["groups"] = [[line.line_number for line in group] for group in groups]
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    print(summary.describe(), file=sys.stderr)
    for group in groups:
        first, last = group[0].line_number, group[-1].line_number
        print(f"@@ lines {first}-{last}" if first != last else f"@@ line {first}")
        for line in group:
            if line.diff.change_type == ChangeType.ADDITION:
                print(f"[+] {line.diff.suggested}")
            elif line.diff.change_type == ChangeType.DELETION:
                print(f"[-] {line.diff.original}")
            else:
                print(f"[~] '{line.diff.original}' -> '{line.diff.suggested}'")


def handle_similarity(args):
    print(f"{text_similarity(args.a, args.b):.4f}")


def handle_load(args):
    data = _read_json(args.rows)
    if not isinstance(data, list):
        print(f"Error: {args.rows} must hold a JSON list of stored lines", file=sys.stderr)
        sys.exit(1)
    records = process_lines_data(data, use_drafts=args.drafts)
    _write_json([record.model_dump(mode="json") for record in records], args.output)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="linetrack", description="Stable line identities for rich-text documents")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_reconcile = subparsers.add_parser("reconcile", help="Assign identifiers to new content using previous line records")
    p_reconcile.add_argument("previous", type=Path, help="JSON file of previous line records")
    p_reconcile.add_argument("new", type=Path, help="New content: JSON list or text file (one line per line)")
    p_reconcile.add_argument("-o", "--output", type=Path, help="Output JSON file (default: stdout)")
    p_reconcile.add_argument("--user", type=str, default=None, help="User credited with the changes")
    p_reconcile.add_argument("--config", type=Path, default=None, help="JSON configuration file")
    p_reconcile.set_defaults(func=handle_reconcile)

    p_diff = subparsers.add_parser("diff", help="Compare original and suggested line records by identifier")
    p_diff.add_argument("original", type=Path, help="JSON file of original line records")
    p_diff.add_argument("suggested", type=Path, help="JSON file of suggested line records")
    p_diff.add_argument("--json", action="store_true", help="Output the summary as JSON")
    p_diff.set_defaults(func=handle_diff)

    p_similarity = subparsers.add_parser("similarity", help="Score how alike two lines are")
    p_similarity.add_argument("a", type=str)
    p_similarity.add_argument("b", type=str)
    p_similarity.set_defaults(func=handle_similarity)

    p_load = subparsers.add_parser("load", help="Turn stored line rows into ordered line records")
    p_load.add_argument("rows", type=Path, help="JSON file of stored rows")
    p_load.add_argument("--drafts", action="store_true", help="Prefer draft content and line numbers")
    p_load.add_argument("-o", "--output", type=Path, help="Output JSON file (default: stdout)")
    p_load.set_defaults(func=handle_load)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
