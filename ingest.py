#!/usr/bin/env python3
"""
CLI for running the HMO ingestion pipeline.

Usage:
    python ingest.py run [--source NAME]
    python ingest.py stale
    python ingest.py analyze <listings_json>

Examples:
    # Full run: every source, enrichment, staleness sweep
    python ingest.py run

    # One source only (enrichment is skipped)
    python ingest.py run --source "PropertyData HMO"

    # Score listings from a file without touching the store
    python ingest.py analyze fixtures/listings.json
"""

import argparse
import json
import sys
from pathlib import Path

from adapters import build_manager
from adapters.static import StaticSourceAdapter
from core.hmo_analyzer import PotentialHMOAnalyzer
from utils.config import Config
from utils.formatting import format_currency, format_percent
from utils.logging_config import configure_logging


def cmd_run(args):
    """Run ingestion, enrichment and the staleness sweep."""
    manager = build_manager(Config.load())
    results = manager.run_ingestion(source_filter=args.source)

    for result in results:
        status = "ok" if result.succeeded else "FAILED"
        print(
            f"{result.source}: {status} - {result.total} total, {result.created} created, "
            f"{result.updated} updated, {result.skipped} skipped ({result.duration_ms}ms)"
        )
        for error in result.errors:
            print(f"  error: {error}", file=sys.stderr)

    if manager.last_enrichment is not None:
        summary = manager.last_enrichment
        print(f"Enrichment: {summary.enriched}/{summary.selected} enriched, {summary.failed} failed")
    if manager.last_stale_count is not None:
        print(f"Marked stale: {manager.last_stale_count}")

    return 0 if all(result.succeeded for result in results) else 1


def cmd_stale(args):
    """Mark properties unseen for the retention window as stale."""
    manager = build_manager(Config.load())
    count = manager.mark_stale_properties()
    print(f"Marked stale: {count}")
    return 0


def cmd_analyze(args):
    """Score listings from a JSON file."""
    input_path = Path(args.listings_file)

    if not input_path.exists():
        print(f"Error: File not found: {input_path}", file=sys.stderr)
        return 1

    try:
        adapter = StaticSourceAdapter(input_path.stem, path=str(input_path))
        listings = adapter.fetch()
    except (json.JSONDecodeError, AttributeError) as e:
        print(f"Error: Invalid listings file: {e}", file=sys.stderr)
        return 1

    analyzer = PotentialHMOAnalyzer()
    for listing in listings:
        analysis = analyzer.analyze(listing)
        print(
            f"{listing.external_id} | {listing.address}, {listing.postcode} | "
            f"{analysis.classification.value} | score {analysis.deal_score} | "
            f"rent {format_currency(analysis.estimated_gross_monthly_rent)}/month | "
            f"yield {format_percent(analysis.estimated_yield_percentage)}"
        )
        for reason in analysis.exclusion_reasons:
            print(f"  excluded: {reason}")

    for rejection in adapter.rejections:
        print(f"rejected {rejection.source_listing_id}: {rejection.rejection_reason}", file=sys.stderr)

    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="HMO Deal Engine - ingestion pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python ingest.py run
    python ingest.py run --source "PropertyData HMO"
    python ingest.py analyze fixtures/listings.json
        """,
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run ingestion, enrichment and staleness sweep")
    run_parser.add_argument("--source", default=None, help="Only run the named source")
    run_parser.set_defaults(func=cmd_run)

    stale_parser = subparsers.add_parser("stale", help="Mark unseen properties as stale")
    stale_parser.set_defaults(func=cmd_stale)

    analyze_parser = subparsers.add_parser("analyze", help="Score listings from a JSON file")
    analyze_parser.add_argument("listings_file", help="Path to a JSON list of listings")
    analyze_parser.set_defaults(func=cmd_analyze)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
