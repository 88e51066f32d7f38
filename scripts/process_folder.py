"""
Batch helper: removes backgrounds from every supported image in a vehicle
folder and writes `<stem>_<vehicle>_processed_<ts>.png` files into an
output directory.

Usage: python scripts/process_folder.py --input photos/ABC123 --output out/ [--vehicle ABC123]
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cutout_service.batch import ProcessingProgress, collect_folder_items, process_batch


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove backgrounds from a folder of vehicle photos")
    parser.add_argument("--input", required=True, help="Folder of source images")
    parser.add_argument("--output", required=True, help="Folder for the RGBA PNGs")
    parser.add_argument("--vehicle", default=None, help="Vehicle/stock id added to output names")
    return parser.parse_args()


def _print_progress(progress: ProcessingProgress) -> None:
    if progress.status != "processing":
        print(f"  [{progress.current}/{progress.total}] {progress.current_file}: {progress.status}")


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    args = parse_args()
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    items = collect_folder_items(args.input)
    result = process_batch(items, on_progress=_print_progress, vehicle_id=args.vehicle)

    for item in result.items:
        if item.png_bytes is not None:
            (output_dir / item.output_name).write_bytes(item.png_bytes)

    print(f"Processed {result.processed_count}/{result.total_count} images")
    for error in result.errors:
        print(f"  failed: {error}")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
