#!/usr/bin/env python3
"""
Render a guideline table CSV through the enrichment pipeline.

Prints the detected subtype, the rendered text and the renderer debug
record, so subtype heuristics can be tuned against real attachments.

Run: python scripts/render_table.py public/rag/tables/module4/table_2_1.csv \
         --caption "Weight-band dosing of medicines used in DR-TB regimens"
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    from src.rag.corpus import Chunk
    from src.rag.tables import TableLoadError, load_table_rows, render_table

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("csv_path", type=Path, help="Table CSV (ColumnA/ColumnB/... layout)")
    parser.add_argument("--caption", default=None, help="Table caption from chunk metadata")
    parser.add_argument("--section", default="", help="Section path from chunk metadata")
    args = parser.parse_args()

    try:
        raw_rows = load_table_rows(args.csv_path)
    except TableLoadError as e:
        logger.error("%s", e)
        return 1

    chunk = Chunk(
        position=0,
        chunk_id=args.csv_path.stem,
        content_type="table",
        caption=args.caption,
        section_path=args.section,
        attachment_path=str(args.csv_path),
    )
    subtype, rendering = render_table(chunk, raw_rows)

    print("=" * 60)
    print(f"Subtype: {subtype.value}")
    print("=" * 60)
    print(rendering.text)
    print()
    print("Debug:")
    print(json.dumps(rendering.debug, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
