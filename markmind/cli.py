"""
MarkMind CLI - Command-line interface for the linking engine.

Usage:
    python -m markmind [--json] [--storage-path PATH] [--provider NAME] <command>

    python -m markmind import <file.json>
    python -m markmind related <fragment_id> [--max-results N] [--min-similarity F] [--use-ai] [--exclude ID ...]
    python -m markmind search "<query>" [--tag TAG ...] [--topic TOPIC ...] [--color COLOR]
                                        [--collection ID] [--from DATE] [--to DATE] [--limit N]
    python -m markmind build-links [--batch-size N]
    python -m markmind stats
    python -m markmind extract "<text>"
    python -m markmind summary [--ids ID ...] [--style STYLE]
    python -m markmind insights [--since DATE] [--until DATE]

Global Options:
    --json              Output as JSON for automation/scripting
    --storage-path PATH Directory holding markmind.db (default: ~/.markmind/storage)
    --provider NAME     AI provider: none, local, openai, anthropic, gemini
"""

import sys
import asyncio
import argparse
import json
from datetime import datetime
from typing import Any, Dict, List

from .config import Settings, settings
from .database import DatabaseManager
from .engine import LinkEngine
from .errors import FragmentNotFoundError
from .logging_config import configure_logging
from .store import SQLFragmentStore
from .types import (
    Fragment,
    HighlightColor,
    LinkingOptions,
    SearchFilters,
    SummaryStyle,
    ensure_aware,
)


def safe_print(text: str, file=None) -> None:
    """Print text safely, handling Unicode encoding errors on Windows."""
    output = file or sys.stdout
    try:
        print(text, file=output)
    except UnicodeEncodeError:
        encoding = output.encoding or 'utf-8'
        safe_text = text.encode(encoding, errors='replace').decode(encoding, errors='replace')
        print(safe_text, file=output)


def load_fragments(path: str) -> List[Fragment]:
    """
    Read fragments from a JSON export.

    Accepts a bare list, or an object with a "fragments" or "highlights" list.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)

    if isinstance(data, dict):
        data = data.get("fragments", data.get("highlights", []))
    if not isinstance(data, list):
        raise ValueError("Expected a JSON list of fragments")

    return [Fragment.from_dict(item) for item in data]


async def import_fragments(engine: LinkEngine, path: str) -> dict:
    fragments = load_fragments(path)
    count = await engine.store.save_fragments(fragments)
    engine.invalidate_indexes()
    return {"imported": count, "file": path}


async def find_related(engine: LinkEngine, fragment_id: str, options: LinkingOptions) -> dict:
    related = await engine.find_related_fragments(fragment_id, options)
    return {
        "fragment_id": fragment_id,
        "related": [r.to_dict() for r in related],
    }


async def search(engine: LinkEngine, query: str, filters: SearchFilters, limit: int) -> dict:
    scored = await engine.search_scored(query, filters)
    return {
        "query": query,
        "total": len(scored),
        "results": [
            {
                "id": fragment.id,
                "score": round(score, 2),
                "text": fragment.text,
                "page_title": fragment.page_title,
            }
            for fragment, score in scored[:limit]
        ],
    }


async def build_links(engine: LinkEngine, batch_size: int, quiet: bool) -> dict:
    def report(processed: int, total: int) -> None:
        if not quiet:
            print(f"  {processed}/{total} fragments processed", file=sys.stderr)

    summary = await engine.batch_build_links(batch_size=batch_size, on_progress=report)
    return summary.to_dict()


async def get_stats(engine: LinkEngine) -> dict:
    stats = await engine.get_graph_statistics()
    return stats.to_dict()


async def extract(engine: LinkEngine, text: str) -> dict:
    concepts = await engine.extract_concepts(text)
    return {"concepts": [c.to_dict() for c in concepts]}


async def summarize(engine: LinkEngine, fragment_ids: List[str], style: SummaryStyle) -> dict:
    text = await engine.summarize_fragments(fragment_ids, style)
    return {"style": style.value, "summary": text}


async def get_insights(engine: LinkEngine, since, until) -> dict:
    insights = await engine.generate_insights(since, until)
    return {"total": len(insights), "insights": [i.to_dict() for i in insights]}


def _parse_date(value: str) -> datetime:
    try:
        return ensure_aware(datetime.fromisoformat(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value} (expected ISO format)")


def format_related(result: dict) -> str:
    lines = [f"Related to {result['fragment_id']}:"]
    if not result["related"]:
        lines.append("  (no related fragments)")
    for row in result["related"]:
        lines.append(
            f"  {row['fragment_id']}  {row['similarity']:.2f}  "
            f"[{row['match_type']}] {row['reason']}"
        )
    return "\n".join(lines)


def format_search(result: dict) -> str:
    lines = [f"Found {result['total']} fragments for \"{result['query']}\":"]
    for row in result["results"]:
        preview = row["text"][:70] + ("..." if len(row["text"]) > 70 else "")
        lines.append(f"  {row['id']}  {row['score']:6.2f}  {preview}")
    return "\n".join(lines)


def format_stats(result: Dict[str, Any]) -> str:
    lines = [
        f"Fragments: {result['total_fragments']}",
        f"Linked: {result['linked_fragments']} ({result['linkage_percentage']:.1f}%)",
        f"Total links: {result['total_links']}",
        f"Avg links per fragment: {result['avg_links_per_fragment']}",
        f"Concepts: {result['total_concepts']}",
    ]
    if result["top_concepts"]:
        lines.append("Top concepts:")
        for concept in result["top_concepts"]:
            lines.append(f"  {concept['name']} ({concept['count']})")
    return "\n".join(lines)


def format_insights(result: Dict[str, Any]) -> str:
    if not result["insights"]:
        return "No insights yet (import at least 5 fragments)"
    lines = []
    for insight in result["insights"]:
        lines.append(f"[{insight['type']}] {insight['title']}")
        lines.append(f"  {insight['description']}")
        if insight["related_ids"]:
            lines.append(f"  Fragments: {', '.join(insight['related_ids'])}")
    return "\n".join(lines)


async def _run(args: argparse.Namespace, config: Settings) -> dict:
    db = DatabaseManager(config.get_storage_path(), config.db_name)
    engine = LinkEngine(SQLFragmentStore(db), config=config)
    try:
        if args.command == "import":
            return await import_fragments(engine, args.file)

        if args.command == "related":
            options = LinkingOptions(
                max_results=(
                    args.max_results if args.max_results is not None
                    else config.max_results
                ),
                min_similarity=(
                    args.min_similarity if args.min_similarity is not None
                    else config.min_similarity
                ),
                use_ai=args.use_ai,
                exclude_ids=args.exclude or (),
            )
            return await find_related(engine, args.fragment_id, options)

        if args.command == "search":
            filters = SearchFilters(
                collection_id=args.collection,
                tags=args.tag or [],
                color=HighlightColor(args.color) if args.color else None,
                date_from=args.date_from,
                date_to=args.date_to,
                topics=args.topic or [],
            )
            return await search(engine, args.query, filters, args.limit)

        if args.command == "build-links":
            return await build_links(engine, args.batch_size, quiet=args.json)

        if args.command == "stats":
            return await get_stats(engine)

        if args.command == "extract":
            return await extract(engine, args.text)

        if args.command == "summary":
            return await summarize(engine, args.ids or [], SummaryStyle(args.style))

        if args.command == "insights":
            return await get_insights(engine, args.since, args.until)

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await db.close()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="MarkMind CLI")

    # Global options
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--storage-path", help="Storage directory")
    parser.add_argument("--provider", choices=["none", "local", "openai", "anthropic", "gemini"],
                        help="AI provider (default from MARKMIND_AI_PROVIDER)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # import command
    import_parser = subparsers.add_parser("import", help="Import fragments from a JSON export")
    import_parser.add_argument("file", help="JSON file with a list of fragments")

    # related command
    related_parser = subparsers.add_parser("related", help="Find fragments related to one fragment")
    related_parser.add_argument("fragment_id", help="Source fragment ID")
    related_parser.add_argument("--max-results", type=int, default=None, help="Maximum results")
    related_parser.add_argument("--min-similarity", type=float, default=None,
                                help="Minimum similarity (0-1)")
    related_parser.add_argument("--use-ai", action="store_true", help="Try the AI provider first")
    related_parser.add_argument("--exclude", nargs="*", default=None, help="Fragment IDs to skip")

    # search command
    search_parser = subparsers.add_parser("search", help="Full-text search")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--tag", action="append", help="Required tag (repeatable)")
    search_parser.add_argument("--topic", action="append", help="Accepted topic (repeatable)")
    search_parser.add_argument("--color", choices=[c.value for c in HighlightColor],
                               help="Highlight color")
    search_parser.add_argument("--collection", help="Collection ID")
    search_parser.add_argument("--from", dest="date_from", type=_parse_date, help="Created on/after (ISO)")
    search_parser.add_argument("--to", dest="date_to", type=_parse_date, help="Created on/before (ISO)")
    search_parser.add_argument("--limit", type=int, default=20, help="Maximum results shown")

    # build-links command
    build_parser = subparsers.add_parser("build-links", help="Link every unlinked fragment")
    build_parser.add_argument("--batch-size", type=int, default=None, help="Fragments per batch")

    # stats command
    subparsers.add_parser("stats", help="Show link graph statistics")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Extract concepts from text")
    extract_parser.add_argument("text", help="Text to analyze")

    # summary command
    summary_parser = subparsers.add_parser("summary", help="Summarize fragments locally")
    summary_parser.add_argument("--ids", nargs="*", default=None,
                                help="Fragment IDs to summarize (default: all)")
    summary_parser.add_argument("--style", choices=[s.value for s in SummaryStyle],
                                default=SummaryStyle.CONCISE.value, help="Summary layout")

    # insights command
    insights_parser = subparsers.add_parser("insights", help="Show reading insights")
    insights_parser.add_argument("--since", type=_parse_date, help="Created on/after (ISO)")
    insights_parser.add_argument("--until", type=_parse_date, help="Created on/before (ISO)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    overrides: Dict[str, Any] = {}
    if args.storage_path:
        overrides["storage_path"] = args.storage_path
    if args.provider:
        overrides["ai_provider"] = args.provider
    config = Settings(**overrides) if overrides else settings

    configure_logging(config.log_level if not args.json else "WARNING", config.log_structured)

    try:
        result = asyncio.run(_run(args, config))
    except (FragmentNotFoundError, OSError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result, default=str))
    elif args.command == "import":
        print(f"Imported {result['imported']} fragments from {result['file']}")
    elif args.command == "related":
        safe_print(format_related(result))
    elif args.command == "search":
        safe_print(format_search(result))
    elif args.command == "build-links":
        print(f"Processed {result['processed']}/{result['total']} fragments")
        print(f"  Linked: {result['linked']}")
        print(f"  Failed: {result['failed']}")
        if result["cancelled"]:
            print("  (cancelled)")
    elif args.command == "stats":
        safe_print(format_stats(result))
    elif args.command == "extract":
        if not result["concepts"]:
            print("No concepts found")
        for concept in result["concepts"]:
            safe_print(
                f"  {concept['name']} [{concept['category']}] {concept['confidence']:.2f}"
            )
    elif args.command == "summary":
        safe_print(result["summary"])
    elif args.command == "insights":
        safe_print(format_insights(result))


if __name__ == "__main__":
    main()
