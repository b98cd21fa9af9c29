import argparse
import asyncio
import sys

import httpx
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from feedlens import config
from feedlens.constants import (
    DEFAULT_CLUSTER_COUNT,
    DEFAULT_REGION,
    DEFAULT_TOPIC,
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
)
from feedlens.errors import FeedLensError
from feedlens.logging_config import configure_logging
from feedlens.main import build_orchestrator
from feedlens.models import FeedResult
from feedlens.orchestrator import FeedRequest, snapshot_result
from feedlens.store import AnalysisStore

console = Console()

SENTIMENT_STYLES = {"positive": "green", "neutral": "yellow", "negative": "red"}


def render_result(result: FeedResult, title: str) -> None:
    source = "[dim](cached)[/]" if result.cached else "[dim](fresh)[/]"
    console.rule(f"[bold cyan]{title}[/] {source}")

    if not result.articles:
        console.print("[yellow]No articles found.[/]")
        return

    console.print(result.summary or "[dim]No summary.[/]")
    if result.top_keywords:
        console.print(f"\n[bold]Keywords:[/] {', '.join(result.top_keywords)}")

    titles = {a.article_id: a for a in result.articles}
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Cluster")
    table.add_column("Articles")
    for cluster in result.clusters:
        lines = []
        for aid in cluster["articleIds"]:
            article = titles.get(aid)
            if article is None:
                continue
            style = SENTIMENT_STYLES.get(article.sentiment, "white")
            lines.append(f"[{style}]●[/] {article.title}")
        table.add_row(str(cluster["id"]), cluster["label"], "\n".join(lines))
    console.print(table)

    counts = result.sentiment_counts
    console.print(
        f"[green]positive {counts['positive']}[/]  "
        f"[yellow]neutral {counts['neutral']}[/]  "
        f"[red]negative {counts['negative']}[/]"
    )
    if result.next_page:
        console.print(f"[dim]Next page: {result.next_page}[/]")


async def run_analyze(args) -> int:
    store = AnalysisStore(args.db or config.get_db_path())
    timeout = httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            orchestrator = build_orchestrator(client, store)
            with console.status(f"[cyan]Analyzing '{args.topic}' ({args.region})..."):
                result = await orchestrator.analyze(
                    FeedRequest(
                        topic=args.topic,
                        region=args.region,
                        page=args.page,
                        num_clusters=args.clusters,
                        use_cache=not args.no_cache,
                    )
                )
    except (FeedLensError, httpx.HTTPError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/]")
        return 1
    finally:
        store.close()

    render_result(result, f"{args.topic} / {args.region}")
    return 0


def run_cached(args) -> int:
    store = AnalysisStore(args.db or config.get_db_path())
    try:
        result = snapshot_result(store, args.topic, args.region)
    finally:
        store.close()

    if result is None:
        console.print("[yellow]No cached analysis for this topic/region.[/]")
        return 1
    render_result(result, f"{args.topic} / {args.region}")
    return 0


def run_serve(args) -> int:
    import uvicorn

    uvicorn.run("feedlens.main:app", host=args.host, port=args.port, reload=False)
    return 0


def run_config(args) -> int:
    config.save_config(args.key, args.value)
    console.print(f"[green]Saved {args.key}[/] to {config.CONFIG_FILE}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cluster and annotate a news feed for a topic and region."
    )
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("--log-level", default=None, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Run one feed analysis pass")
    analyze.add_argument("topic", nargs="?", default=DEFAULT_TOPIC)
    analyze.add_argument("--region", default=DEFAULT_REGION)
    analyze.add_argument("--clusters", type=int, default=DEFAULT_CLUSTER_COUNT)
    analyze.add_argument("--page", default=None, help="Pagination cursor")
    analyze.add_argument(
        "--no-cache", action="store_true", help="Ignore stored snapshots"
    )

    cached = sub.add_parser("cached", help="Show the stored snapshot")
    cached.add_argument("topic", nargs="?", default=DEFAULT_TOPIC)
    cached.add_argument("--region", default=DEFAULT_REGION)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3001)

    cfg = sub.add_parser("config", help="Persist a setting")
    cfg.add_argument("key", choices=sorted(config.SETTINGS))
    cfg.add_argument("value")
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or config.get_log_level(), config.get_log_format())

    if args.command == "analyze":
        return asyncio.run(run_analyze(args))
    if args.command == "cached":
        return run_cached(args)
    if args.command == "serve":
        return run_serve(args)
    return run_config(args)


if __name__ == "__main__":
    sys.exit(main())
