"""
Batch export orchestrator.

Runs saved HTML product pages through: parse -> extract -> classify ->
serialize, writes one Shopify CSV per product into exports/ plus all
records into products.json, then prints a report.

    python main.py                 # every data/*.html
    python main.py page1.html ...  # specific files
"""

import argparse
import logging
import time
from dataclasses import dataclass
from pathlib import Path

import orjson

from exporter import make_handle, serialize, write_csv
from extractor import FIELD_CHAINS, ExtractionReport, extract_with_report
from models import CategoryMatch, CsvRow, ProductRecord
from parser import parse_html
from taxonomy import load_category_table, resolve

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
EXPORTS_DIR = Path(__file__).parent / "exports"
OUTPUT_FILE = Path(__file__).parent / "products.json"


@dataclass
class FileResult:
    filename: str
    record: ProductRecord
    report: ExtractionReport
    match: CategoryMatch
    rows: list[CsvRow]
    parse_time: float


def process_file(filepath: Path, table, exports_dir: Path = EXPORTS_DIR) -> FileResult:
    """Run a single saved page through the full pipeline and write its CSV."""
    logger.info("Processing %s...", filepath.name)

    html = filepath.read_text(encoding="utf-8")

    t0 = time.monotonic()
    parsed = parse_html(html)
    parse_time = time.monotonic() - t0

    logger.info(
        "  Parsed: %d JSON-LD, %d OG tags, %d state fragments, %d breadcrumbs",
        len(parsed.json_ld),
        len(parsed.og_tags),
        len(parsed.state_fragments),
        len(parsed.breadcrumbs),
    )

    record, report = extract_with_report(parsed, url=parsed.og_tags.get("url", ""))
    match = resolve(record.categories, table)
    rows = serialize(record, match.config)

    exports_dir.mkdir(parents=True, exist_ok=True)
    out_path = exports_dir / f"{make_handle(record.title)}.csv"
    with out_path.open("w", newline="", encoding="utf-8") as f:
        write_csv(rows, f)
    logger.info("  Wrote %d rows to %s", len(rows), out_path.name)

    return FileResult(filepath.name, record, report, match, rows, parse_time)


def process_all(files: list[Path], table, exports_dir: Path = EXPORTS_DIR) -> tuple[list[FileResult], list[str]]:
    """Process every file, collecting failures instead of stopping.

    Returns (results, failed_filenames).
    """
    logger.info("Found %d HTML files to process", len(files))
    results: list[FileResult] = []
    failed: list[str] = []

    for filepath in files:
        try:
            results.append(process_file(filepath, table, exports_dir))
        except Exception as exc:
            logger.error("Failed to process %s: %s", filepath.name, exc, exc_info=exc)
            failed.append(filepath.name)

    return results, failed


def write_products(results: list[FileResult], path: Path = OUTPUT_FILE) -> None:
    products_json = [r.record.model_dump(mode="json") for r in results]
    path.write_bytes(orjson.dumps(products_json, option=orjson.OPT_INDENT_2))
    logger.info("Wrote %d products to %s", len(results), path)


def print_report(results: list[FileResult], failed: list[str], wall_clock: float) -> None:
    """Print a comprehensive extraction report."""
    total_files = len(results) + len(failed)
    n = len(results)

    # ── Reliability ──────────────────────────────────────────────────
    print(f"\n{'='*70}")
    print("EXPORT REPORT")
    print(f"{'='*70}")

    print("\n── Reliability ──")
    print(f"  Files attempted:  {total_files}")
    print(f"  Succeeded:        {n}")
    print(f"  Failed:           {len(failed)}")
    print(f"  Success rate:     {n/total_files*100:.0f}%" if total_files else "  N/A")
    for name in failed:
        print(f"    FAILED {name}")

    if not results:
        print("\n  No successful extractions to report on.")
        return

    invalid = sum(len(r.report.invalid_fragments) for r in results)
    if invalid:
        print(f"  Invalid state fragments skipped: {invalid}")

    # ── Strategy provenance ─────────────────────────────────────────
    print("\n── Winning strategy per field ──")
    for chain in FIELD_CHAINS:
        counts: dict[str, int] = {}
        for r in results:
            source = r.report.sources.get(chain.name) or "(none)"
            counts[source] = counts.get(source, 0) + 1
        summary = ", ".join(f"{name} x{count}" for name, count in sorted(counts.items(), key=lambda x: -x[1]))
        print(f"  {chain.name:<12} {summary}")

    # ── Category Resolution ─────────────────────────────────────────
    print("\n── Category Resolution ──")
    resolutions: dict[str, int] = {}
    for r in results:
        resolutions[r.match.resolution] = resolutions.get(r.match.resolution, 0) + 1
    for method, count in sorted(resolutions.items(), key=lambda x: -x[1]):
        label = {
            "keyword": "Specific keyword rule",
            "gender": "Gender fallback",
            "default": "Default configuration",
        }.get(method, method)
        print(f"  {label:<45} {count}/{n}")
    print()
    for r in results:
        keyword = f" ('{r.match.keyword}')" if r.match.keyword else ""
        print(f"    {r.filename:<25} {r.match.resolution}{keyword} -> {r.match.config.target_category}")

    # ── Output ──────────────────────────────────────────────────────
    print("\n── Output ──")
    print(f"  {'File':<25} {'Sizes':>6} {'Colors':>7} {'Images':>7} {'Rows':>6} {'Price':>12}")
    print(f"  {'-'*67}")
    for r in results:
        print(f"  {r.filename:<25} {len(r.record.variants.sizes):>6} {len(r.record.variants.colors):>7} "
              f"{len(r.record.images):>7} {len(r.rows):>6} {r.record.marked_up_price:>12}")
    print(f"  {'-'*67}")
    print(f"  {'TOTAL':<25} {'':>6} {'':>7} {sum(len(r.record.images) for r in results):>7} "
          f"{sum(len(r.rows) for r in results):>6}")

    # ── Timing ──────────────────────────────────────────────────────
    print("\n── Timing ──")
    print(f"  Wall clock (total):  {wall_clock:.2f}s")
    print(f"  {'File':<25} {'Parse':>8} {'Extract':>9}")
    print(f"  {'-'*44}")
    for r in results:
        print(f"  {r.filename:<25} {r.parse_time:>7.3f}s {r.report.elapsed:>8.3f}s")

    print(f"\n{'='*70}")


def main(argv: list[str] | None = None) -> int:
    arg_parser = argparse.ArgumentParser(description="Export saved product pages to Shopify CSV")
    arg_parser.add_argument("files", nargs="*", type=Path, help="HTML files (default: data/*.html)")
    args = arg_parser.parse_args(argv)

    files = args.files or sorted(DATA_DIR.glob("*.html"))
    table = load_category_table()

    t_wall_start = time.monotonic()
    results, failed = process_all(files, table)
    wall_clock = time.monotonic() - t_wall_start

    write_products(results)
    print_report(results, failed, wall_clock)
    return 1 if failed and not results else 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    raise SystemExit(main())
