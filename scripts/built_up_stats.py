#!/usr/bin/env python3
"""
Built-up surface percentage of a cell for two GHSL epochs.

Usage:
    python scripts/built_up_stats.py --lat 51.5012 --lon -0.1330 --size-km 70 [--export]
    python scripts/built_up_stats.py --den-haag [--export]
"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import logging
import os

from dotenv import load_dotenv

from built_up import DEFAULT_EPOCHS, DEN_HAAG, compare_built_up, export_built_up, point_cell, rectangle_cell
from errors import ForecastToolsError

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Built-up surface statistics from JRC GHSL')
    parser.add_argument('--lat', type=float, default=51.501236841201475, help='Cell centre latitude')
    parser.add_argument('--lon', type=float, default=-0.132991009533428, help='Cell centre longitude')
    parser.add_argument('--size-km', type=float, default=70, help='Cell side length in km')
    parser.add_argument('--den-haag', action='store_true', help='Use the Den Haag rectangle instead of a cell')
    parser.add_argument('--epochs', default=",".join(str(y) for y in DEFAULT_EPOCHS),
                        help='Comma-separated GHSL epochs')
    parser.add_argument('--export', action='store_true', help='Start Google Drive exports')
    args = parser.parse_args(argv)

    load_dotenv()
    project = os.getenv("EE_PROJECT_ID")

    try:
        epochs = [int(y) for y in args.epochs.split(",")]
        if args.den_haag:
            cell = rectangle_cell("Den Haag", DEN_HAAG)
        else:
            cell = point_cell(args.lat, args.lon, args.size_km)

        comparison = compare_built_up(cell, epochs, project=project)
        for epoch in comparison.epochs:
            value = f"{epoch.percent:.2f}%" if epoch.percent is not None else "n/a"
            print(f"Built-up surface percentage in {epoch.year} for the {cell.name}: {value}")
        if comparison.change is not None:
            print(f"Change {epochs[0]}-{epochs[-1]}: {comparison.change:+.2f} percentage points")

        if args.export:
            tasks = export_built_up(cell, epochs, start=True, project=project)
            logger.info(f"Started {len(tasks)} export tasks")
    except (ForecastToolsError, ValueError) as e:
        logger.error(f"Built-up statistics failed: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
