"""
Diagnostic: run every fallback chain on each saved page without writing exports.
Reports which state fragments were found and which strategy won each field.
"""

import sys
from dataclasses import replace
from pathlib import Path

from errors import MissingField
from extractor import (
    FIELD_CHAINS,
    ExtractionContext,
    ExtractionReport,
    load_state_fragments,
)
from parser import parse_html

DATA_DIR = Path(__file__).parent / "data"


def _summarize(value) -> str:
    if isinstance(value, list):
        if len(value) <= 5:
            return str(value)
        return f"{len(value)} items: {value[:3]} + {len(value) - 3} more"
    if isinstance(value, dict):
        return f"{len(value)} entries: {list(value)[:5]}"
    text = str(value)
    return text[:150] + ("..." if len(text) > 150 else "")


def diagnose_file(filepath: Path) -> dict:
    parsed = parse_html(filepath.read_text(encoding="utf-8"))
    extraction = ExtractionReport()
    states = load_state_fragments(parsed, extraction)
    ctx = ExtractionContext(page=parsed, states=tuple(states))

    report = {
        "file": filepath.name,
        "parser": {
            "json_ld_blocks": len(parsed.json_ld),
            "og_tags": len(parsed.og_tags),
            "state_fragments": list(parsed.state_fragments),
            "breadcrumbs": parsed.breadcrumbs,
            "gallery_images": len(parsed.gallery_images),
        },
        "valid_fragments": extraction.fragments,
        "invalid_fragments": extraction.invalid_fragments,
        "fields": {},
        "missing": [],
    }

    # Chains run independently so every field gets a verdict
    for chain in FIELD_CHAINS:
        try:
            value, source = chain.run(ctx)
        except MissingField:
            value, source = None, None
        if chain.name in ("brand", "title"):
            ctx = replace(ctx, **{chain.name: value})
        if source is None:
            report["missing"].append(chain.name)
            report["fields"][chain.name] = (None, None)
        else:
            report["fields"][chain.name] = (source, _summarize(value))

    return report


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    html_files = [Path(a) for a in args] or sorted(DATA_DIR.glob("*.html"))
    print(f"Diagnosing {len(html_files)} files (extraction chains only, no export)\n")

    all_reports = []
    for filepath in html_files:
        report = diagnose_file(filepath)
        all_reports.append(report)

        print(f"{'=' * 70}")
        print(f"  {report['file']}")
        print(f"{'=' * 70}")

        p = report["parser"]
        print(
            f"  Parser: {p['json_ld_blocks']} JSON-LD | {p['og_tags']} OG tags | "
            f"{len(p['state_fragments'])} state fragments | {p['gallery_images']} gallery imgs"
        )
        if report["valid_fragments"]:
            print(f"  Valid fragments:   {report['valid_fragments']}")
        if report["invalid_fragments"]:
            print(f"  INVALID fragments: {report['invalid_fragments']}")
        if p["breadcrumbs"]:
            print(f"  Breadcrumbs: {' > '.join(p['breadcrumbs'])}")

        print()
        for field, (source, summary) in report["fields"].items():
            if source is None:
                print(f"    {field:<12} MISSING")
            else:
                print(f"    {field:<12} [{source}] {summary}")
        print()

    print(f"\n{'=' * 70}")
    print("SUMMARY: winning strategy per file")
    print(f"{'=' * 70}")
    print(f"{'Field':<14}", end="")
    for r in all_reports:
        print(f"{r['file'][:20]:<22}", end="")
    print()
    print("-" * 90)
    for chain in FIELD_CHAINS:
        print(f"{chain.name:<14}", end="")
        for r in all_reports:
            source = r["fields"][chain.name][0] or "MISSING"
            print(f"{source[:20]:<22}", end="")
        print()


if __name__ == "__main__":
    main()
