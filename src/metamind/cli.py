"""
MetaMind - Orchestrator CLI

Usage:
    metamind ask "Give me one tip for the laning phase as JSON" --kind realtime
    metamind precache prompts.json
    metamind stats --recent 10
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .ai.orchestrator import build_orchestrator
from .ai.types import ExpectedShape
from .config import get_config, validate_config
from .db import AIRequestRepository, Database
from .exceptions import (
    AllProvidersExhaustedError,
    ConfigurationError,
    InvalidRequestError,
    MetaMindError,
    MissingConfigError,
)
from .logging_config import LogContext, generate_correlation_id, get_logger, setup_logging


console = Console()
logger = get_logger(__name__)


def _print_json(value) -> None:
    console.print(Syntax(json.dumps(value, indent=2, ensure_ascii=False), "json", word_wrap=True))


async def run_ask(
    prompt: str,
    expected_shape: str = "object",
    kind: str = "realtime",
    cache_lifetime_ms: int = None,
    force_refresh: bool = False
) -> int:
    """Send one prompt through the orchestrator and print the normalized result"""
    config = get_config()

    with LogContext(correlation_id=generate_correlation_id()):
        async with build_orchestrator(config) as orchestrator:
            with console.status("[bold green]Asking the model..."):
                result = await orchestrator.get_orchestrated_response(
                    prompt,
                    expected_shape=expected_shape,
                    kind=kind,
                    cache_lifetime_ms=cache_lifetime_ms,
                    force_refresh=force_refresh,
                )

    console.print(Panel.fit(f"[bold]kind[/bold]: {kind}   [bold]shape[/bold]: {expected_shape}"))
    _print_json(result)
    return 0


async def run_precache(path: Path) -> int:
    """Warm the cache from a JSON list of {prompt, expectedShape, kind, cacheLifetimeMs}"""
    entries = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        console.print("[red]Precache file must contain a JSON list[/red]")
        return 1

    config = get_config()
    async with build_orchestrator(config) as orchestrator:
        with console.status(f"[bold green]Warming {len(entries)} prompts..."):
            results = await orchestrator.precache_prompts(entries)

    color = "green" if len(results) == len(entries) else "yellow"
    console.print(f"[{color}]Cached {len(results)}/{len(entries)} prompts[/{color}]")
    if not config.cache.redis_url:
        console.print("[dim]No REDIS_URL set: the in-memory cache ends with this process.[/dim]")
    return 0 if results or not entries else 1


async def run_stats(recent: int = 10) -> int:
    """Show per-provider totals and the latest requests from ai_requests"""
    config = get_config()
    if not config.metrics.db_path:
        raise MissingConfigError("AI_METRICS_DB", "Point it at the SQLite file the orchestrator writes")
    db = Database(config.metrics.db_path)
    await db.connect()
    try:
        repo = AIRequestRepository(db)
        summary = await repo.summary_by_provider()
        latest = await repo.get_recent(recent)
    finally:
        await db.close()

    if not summary:
        console.print("[dim]No AI requests recorded yet.[/dim]")
        return 0

    table = Table(title="AI requests by provider")
    table.add_column("Provider")
    table.add_column("Total", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Fallback", justify="right")
    table.add_column("Avg ms", justify="right")
    table.add_column("Max ms", justify="right")
    for row in summary:
        table.add_row(
            row["provider"] or "[red]exhausted[/red]",
            str(row["total"]),
            str(row["successes"] or 0),
            str(row["fallbacks"] or 0),
            str(row["avg_duration_ms"] or 0),
            str(row["max_duration_ms"] or 0),
        )
    console.print(table)

    if latest:
        recent_table = Table(title=f"Last {len(latest)} requests")
        for column in ("created_at", "kind", "provider", "model", "duration_ms", "success", "fallback"):
            recent_table.add_column(column)
        for row in latest:
            recent_table.add_row(
                str(row["created_at"]),
                row["kind"] or "",
                row["provider"] or "-",
                row["model"] or "",
                str(row["duration_ms"]),
                "yes" if row["success"] else "[red]no[/red]",
                "yes" if row["fallback"] else "",
            )
        console.print(recent_table)
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "ask":
        return asyncio.run(run_ask(
            prompt=args.prompt,
            expected_shape=args.shape,
            kind=args.kind,
            cache_lifetime_ms=args.ttl,
            force_refresh=args.refresh,
        ))
    if args.command == "precache":
        return asyncio.run(run_precache(Path(args.file)))
    return asyncio.run(run_stats(recent=args.recent))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="metamind",
        description="MetaMind - cached, coalesced, multi-provider AI requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    metamind ask "Return {\\"fullText\\": \\"...\\"} with one tip" --kind realtime
    metamind ask "List three drills as a JSON array" --shape array --kind analysis
    metamind precache prompts.json
    metamind stats
        """
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Run one prompt through the orchestrator")
    ask.add_argument("prompt", help="Prompt text")
    ask.add_argument(
        "--shape", "-s",
        choices=[shape.value for shape in ExpectedShape],
        default=ExpectedShape.OBJECT.value,
        help="Expected top-level JSON shape (default: object)"
    )
    ask.add_argument(
        "--kind", "-k",
        default="realtime",
        help="Routing kind: realtime, analysis or anything else for default"
    )
    ask.add_argument(
        "--ttl",
        type=int,
        default=None,
        help="Cache lifetime in milliseconds (default: per route)"
    )
    ask.add_argument(
        "--refresh",
        action="store_true",
        help="Skip the cache read"
    )

    precache = subparsers.add_parser("precache", help="Warm the cache from a JSON file")
    precache.add_argument("file", help="JSON list of prompt entries")

    stats = subparsers.add_parser("stats", help="Summarize recorded AI requests")
    stats.add_argument(
        "--recent", "-n",
        type=int,
        default=10,
        help="Number of latest requests to list (default: 10)"
    )

    args = parser.parse_args(argv)

    # Load environment before reading config
    load_dotenv()
    get_config.cache_clear()
    config = get_config()

    setup_logging(
        level="DEBUG" if args.debug else config.logging.level,
        json_format=config.logging.json_format,
        log_file=config.logging.log_file,
    )
    logger.info("MetaMind CLI starting", extra={"command": args.command})

    try:
        if args.command != "stats":
            validate_config()
        return _dispatch(args)
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error: {e.message}[/red]")
        console.print("[dim]Copy .env.example to .env and add at least one provider key[/dim]")
    except InvalidRequestError as e:
        console.print(f"[red]Invalid request: {e.message}[/red]")
    except AllProvidersExhaustedError as e:
        console.print(f"[red]{e.message}[/red]")
        console.print("[dim]Check your API keys and provider status.[/dim]")
    except MetaMindError as e:
        logger.error(f"Error: {e}")
        console.print(f"[red]Error: {e.message}[/red]")
    except FileNotFoundError as e:
        console.print(f"[red]File not found: {e.filename}[/red]")
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON: {e}[/red]")
    return 1


if __name__ == "__main__":
    sys.exit(main())
