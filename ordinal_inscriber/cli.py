"""Command-line interface for Ordinal Inscriber.

The CLI runs the HTTP service and exposes the same building blocks for use
from a terminal: environment resolution, staging a file into the ord
container, assembling inscribe commands, cache housekeeping and parsing
saved ``ord`` output.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .cache import CacheError, CacheManager, format_byte_size
from .commands import (
    BRC20_OPERATIONS,
    COMPACT_JSON_SEPARATORS,
    CommandValidationError,
    InscribeOptions,
    build_brc20_command,
    build_inscribe_command,
    estimate_fee,
)
from .config import ConfigurationError, container_file_path, load_app_config, set_default_config_path
from .environment import EnvironmentResolver
from .executor import CommandRunner, DockerCLI
from .parsing import parse_inscribe_output
from .probe import ResolutionError
from .stager import FileStager, StagingError

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ordinal Inscriber CLI")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML config file (default: ~/.ordinal-inscriber.yaml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="run the HTTP API with waitress")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: PORT or 3500)")

    env_parser = subparsers.add_parser("env", help="show how containers, API URL and IP resolve")
    env_parser.add_argument("--json", action="store_true", help="Print the raw JSON summary")

    stage_parser = subparsers.add_parser("stage", help="copy a file into the ord container")
    stage_parser.add_argument("file", help="File to stage")
    stage_parser.add_argument("--container", default=None, help="Target container (default: resolved)")
    stage_parser.add_argument(
        "--optimize",
        action="store_true",
        help="Re-encode large JPEG/PNG files as WebP before copying",
    )
    stage_parser.add_argument(
        "--verify",
        action="store_true",
        help="List the staged file inside the container afterwards",
    )

    command_parser = subparsers.add_parser(
        "command", help="print the ord wallet inscribe command for a staged file"
    )
    command_parser.add_argument("file", help="File name (or container path) to inscribe")
    command_parser.add_argument("--fee-rate", required=True, help="Fee rate in sat/vB")
    command_parser.add_argument("--container", default=None, help="ord container (default: resolved)")
    command_parser.add_argument("--destination", default=None, help="Destination address")
    command_parser.add_argument("--parent", default=None, help="Parent inscription id")
    command_parser.add_argument("--metadata", default=None, help="Metadata file path inside the container")
    command_parser.add_argument("--sat", default=None, help="Inscribe on a specific sat")
    command_parser.add_argument("--content-type", default=None, help="Override the content type")
    command_parser.add_argument("--dry-run", action="store_true", help="Add --dry-run")
    command_parser.add_argument("--no-limit-check", action="store_true", help="Add --no-limit-check")
    command_parser.add_argument("--compress", action="store_true", help="Add --compress")

    brc20_parser = subparsers.add_parser("brc20", help="print a BRC-20 inscribe command")
    brc20_parser.add_argument("operation", choices=BRC20_OPERATIONS)
    brc20_parser.add_argument("ticker", help="1-4 character ticker")
    brc20_parser.add_argument("--fee-rate", required=True, help="Fee rate in sat/vB")
    brc20_parser.add_argument("--amount", default=None, help="Amount for mint/transfer")
    brc20_parser.add_argument("--max-supply", default=None, help="Max supply for deploy")
    brc20_parser.add_argument("--mint-limit", default=None, help="Per-mint limit for deploy")
    brc20_parser.add_argument("--destination", default=None, help="Destination address")
    brc20_parser.add_argument("--container", default=None, help="ord container (default: resolved)")

    cache_parser = subparsers.add_parser("cache", help="inspect or trim the upload cache")
    cache_parser.add_argument("action", choices=("info", "sweep", "clear"))

    parse_parser = subparsers.add_parser("parse", help="extract ids from saved ord output")
    parse_parser.add_argument("file", help="File containing ord output, or - for stdin")

    return parser


def _load_config(args: argparse.Namespace):
    if args.config:
        set_default_config_path(args.config)
    return load_app_config()


def _resolver(config) -> EnvironmentResolver:
    return EnvironmentResolver(config, DockerCLI(CommandRunner()))


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_serve(args: argparse.Namespace) -> None:
    from waitress import serve

    from .server import create_app

    config = _load_config(args)
    host = args.host or config.host
    port = args.port or config.port
    app = create_app(config)
    logger.info("Ordinal Inscriber API listening on %s:%s", host, port)
    serve(app, host=host, port=port)


def cmd_env(args: argparse.Namespace) -> None:
    summary = _resolver(_load_config(args)).describe()
    if args.json:
        _print_json(summary)
        return
    print(f"platform: {summary['platform']}")
    for key in ("ordContainer", "bitcoinContainer", "ordApiUrl", "localIp"):
        item = summary[key]
        print(f"{key}: {item['value']} ({item['source']})")
    print(f"containerPath: {summary['containerPath']}")


def cmd_stage(args: argparse.Namespace) -> None:
    config = _load_config(args)
    resolver = _resolver(config)
    container = args.container or resolver.ord_container().value
    stager = FileStager(
        resolver.docker,
        container_path=config.container_path,
        optimize_threshold_bytes=config.optimize_threshold_bytes,
    )
    result = stager.stage(
        Path(args.file),
        container,
        optimize=args.optimize,
        verify=args.verify,
        alternatives=[] if args.container else resolver.ord_container_candidates(),
    )
    _print_json(result.as_dict())
    if result.error:
        raise CLIError(f"staging {args.file} failed")


def cmd_command(args: argparse.Namespace) -> None:
    config = _load_config(args)
    container = args.container or _resolver(config).ord_container().value
    file_path = args.file
    if not file_path.startswith("/"):
        file_path = container_file_path(config.container_path, file_path)
    options = InscribeOptions(
        fee_rate=args.fee_rate,
        file_path=file_path,
        destination=args.destination,
        metadata_path=args.metadata,
        parent_id=args.parent,
        sat=args.sat,
        content_type=args.content_type,
        dry_run=args.dry_run,
        no_limit_check=args.no_limit_check,
        compress=args.compress,
    )
    print(build_inscribe_command(container, options))


def cmd_brc20(args: argparse.Namespace) -> None:
    config = _load_config(args)
    container = args.container or _resolver(config).ord_container().value
    command, payload = build_brc20_command(
        container,
        args.operation,
        args.ticker,
        fee_rate=args.fee_rate,
        amount=args.amount,
        max_supply=args.max_supply,
        mint_limit=args.mint_limit,
        destination=args.destination,
    )
    print(json.dumps(payload, separators=COMPACT_JSON_SEPARATORS))
    print(command)
    fees = estimate_fee("brc20", args.fee_rate)
    print(f"estimated fee: {fees['totalFee']} sats ({fees['processingTime']})")


def cmd_cache(args: argparse.Namespace) -> None:
    config = _load_config(args)
    cache = CacheManager(config.staging_dir, config.cache_limit_bytes)
    if args.action == "info":
        info = cache.info()
        print(
            f"{info.file_count} files, {format_byte_size(info.total_size)} of "
            f"{format_byte_size(info.limit_bytes)} ({info.percent_used}%)"
        )
        for item in info.files:
            print(f"  {item.name}\t{format_byte_size(item.size)}")
    elif args.action == "sweep":
        removed = cache.sweep()
        print(f"removed {len(removed)} files")
        for name in removed:
            print(f"  {name}")
    else:
        print(f"cleared {cache.clear_all()} files")


def cmd_parse(args: argparse.Namespace) -> None:
    if args.file == "-":
        text = sys.stdin.read()
    else:
        text = Path(args.file).read_text(encoding="utf-8")
    _print_json(parse_inscribe_output(text).as_dict())


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "serve":
            cmd_serve(args)
        elif args.command == "env":
            cmd_env(args)
        elif args.command == "stage":
            cmd_stage(args)
        elif args.command == "command":
            cmd_command(args)
        elif args.command == "brc20":
            cmd_brc20(args)
        elif args.command == "cache":
            cmd_cache(args)
        elif args.command == "parse":
            cmd_parse(args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (
        CLIError,
        ConfigurationError,
        CommandValidationError,
        StagingError,
        ResolutionError,
        CacheError,
        OSError,
    ) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
