#!/usr/bin/env python3
"""Group IP addresses by province and ISP using the ipip lookup service."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ipgroup.lib import classifier  # type: ignore  # noqa: E402
from ipgroup.lib import config_loader  # type: ignore  # noqa: E402
from ipgroup.lib import ip_sources  # type: ignore  # noqa: E402
from ipgroup.lib import logging_utils  # type: ignore  # noqa: E402


def collect_ips(args: argparse.Namespace) -> List[str]:
    if args.file:
        return ip_sources.read_lines(args.file)
    if args.csv:
        return ip_sources.read_csv_column(args.csv, args.column)
    if args.xlsx:
        return ip_sources.read_xlsx_column(args.xlsx, args.column, args.sheet)
    return ip_sources.from_args(args.ips)


def write_output(text: str, output: Path | None) -> None:
    if output is None:
        sys.stdout.write(text + "\n")
        sys.stdout.flush()
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Group IP addresses by province and ISP")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("-f", "--file", type=Path, help="Input file with one IP address per line")
    source.add_argument("--csv", type=Path, help="CSV spreadsheet with a header row")
    source.add_argument("--xlsx", type=Path, help="Excel workbook with a header row (needs openpyxl)")
    parser.add_argument(
        "--column",
        type=int,
        default=ip_sources.DEFAULT_COLUMN,
        help="1-based spreadsheet column holding the addresses (default: 2)",
    )
    parser.add_argument("--sheet", help="Worksheet name for --xlsx (default: first sheet)")
    parser.add_argument("-o", "--output", type=Path, help="Write JSON to this file instead of stdout")
    parser.add_argument("--format", choices=config_loader.FORMATS, help="Output shape (default: nested)")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("ips", nargs="*", help="IP addresses, used when no input file is given")
    return parser


def run(args: argparse.Namespace) -> int:
    try:
        config: Dict[str, Any] = config_loader.load_config(args.config)
    except config_loader.ConfigError as exc:
        print(f"Error loading configuration: {exc}", file=sys.stderr)
        return 1

    try:
        ips = ip_sources.unique(collect_ips(args))
    except ip_sources.InputError as exc:
        print(f"Error reading input: {exc}", file=sys.stderr)
        return 1

    grouping = classifier.classify_ips(ips, config)
    unknown = classifier.count_unknown(grouping, config["unknown"])
    logging_utils.warn(f"{len(ips)} unique addresses, {unknown} unknown")

    fmt = args.format or config["format"]
    try:
        text = json.dumps(classifier.render(grouping, fmt), ensure_ascii=False, indent=2)
    except (TypeError, ValueError) as exc:
        print(f"Error generating JSON output: {exc}", file=sys.stderr)
        return 1

    output = args.output
    if output is None and config.get("output"):
        output = Path(config["output"])
    try:
        write_output(text, output)
    except OSError as exc:
        print(f"Error writing output: {exc}", file=sys.stderr)
        return 1
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.ips and (args.file or args.csv or args.xlsx):
        parser.error("positional IP addresses cannot be combined with an input file")
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
