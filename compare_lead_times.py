#!/usr/bin/env python3
"""
Lead-time forecast comparison from the command line.

For every day from --start to --end, fetches the forecast valid at the run
hour as issued at each lead time, then reports the per-day differences of two
lead times with their mean and population standard deviation.

Usage:
    python compare_lead_times.py --start 2025-01-01 --end 2025-01-31 --leads 24,48,312
        [--first 312h --second 24h] [--csv out.csv] [--json out.json] [--plot out.png]

Settings not given on the command line come from --config (JSON), the
environment or .env (see config.py).
"""

import sys
import argparse
import logging
import json
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from config import config_to_dict, create_source, load_config
from errors import ForecastToolsError
from lead_time import ComparisonResult, run_comparison, series_to_frame

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def write_csv(result: ComparisonResult, path: Path):
    """Per-date values for every lead time plus the difference column."""
    names = [s.name for s in result.lead_specs]
    df = series_to_frame(result.series, names)
    diff = series_to_frame(result.difference_series, [f"{result.first} - {result.second}"])
    df = df.join(diff, how="left")
    df.to_csv(path)
    logger.info(f"Wrote {len(df)} rows to {path}")


def plot_comparison(result: ComparisonResult, path: Path):
    """Lead-time values (top) and their differences (bottom); gaps are left open."""
    names = [s.name for s in result.lead_specs]
    df = series_to_frame(result.series, names)
    diff = series_to_frame(result.difference_series, ["difference"])

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)

    for name in names:
        ax1.plot(df.index, df[name], marker='o', label=f"Lead {name}")
    ax1.set_ylabel("Region mean")
    ax1.set_title("Forecast value at validity time by lead time")
    ax1.legend()
    ax1.grid(True, alpha=0.3)

    # Differences only exist on complete dates; reindex so skipped dates stay gaps
    diff = diff.reindex(df.index)
    ax2.plot(diff.index, diff["difference"], marker='o', color='tab:red')
    ax2.axhline(0, color='black', linewidth=0.8)
    if result.stats.available:
        ax2.axhline(result.stats.mean, color='tab:red', linestyle='--',
                    label=f"mean {result.stats.mean:.2f} (std {result.stats.std:.2f})")
        ax2.legend()
    ax2.set_ylabel(f"{result.first} - {result.second}")
    ax2.set_xlabel("Validity time (UTC)")
    ax2.grid(True, alpha=0.3)

    fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(path, dpi=120)
    plt.close(fig)
    logger.info(f"Saved plot to {path}")


def print_summary(result: ComparisonResult):
    counts = result.counts
    print("=" * 60)
    print(f"Lead-time comparison: {result.first} - {result.second}")
    print("=" * 60)
    print(f"  Validity dates:     {len(result.samples)}")
    print(f"  Values requested:   {counts.requested}")
    print(f"  Values found:       {counts.present}")
    print(f"  Values absent:      {counts.absent}")
    print(f"  Fetches failed:     {counts.failed}")
    print(f"  Complete dates:     {result.stats.count}")
    if result.stats.available:
        print(f"  Mean difference:    {result.stats.mean:.3f}")
        print(f"  Std (population):   {result.stats.std:.3f}")
    else:
        print("  Mean difference:    n/a")
        print("  Std (population):   n/a")
    print("=" * 60)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Compare forecasts for the same validity dates issued at different lead times'
    )
    parser.add_argument('--config', help='JSON config file')
    parser.add_argument('--start', help='First validity date (YYYY-MM-DD)')
    parser.add_argument('--end', help='Last validity date (YYYY-MM-DD), inclusive')
    parser.add_argument('--leads', help='Comma-separated lead hours, e.g. 24,48,312')
    parser.add_argument('--run-hour', type=int, choices=[0, 6, 12, 18],
                        help='UTC hour of the validity time')
    parser.add_argument('--source', choices=['earthengine', 'opendata'],
                        help='Forecast source')
    parser.add_argument('--max-workers', type=int, help='Concurrent fetches')
    parser.add_argument('--first', help='Lead name to subtract from (default: longest lead)')
    parser.add_argument('--second', help='Lead name to subtract (default: shortest lead)')
    parser.add_argument('--csv', type=Path, help='Write per-date values to CSV')
    parser.add_argument('--json', type=Path, help='Write the full result as JSON')
    parser.add_argument('--plot', type=Path, help='Save a PNG chart')

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, overrides={
            "start_date": args.start,
            "end_date": args.end,
            "lead_hours": args.leads,
            "run_hour": args.run_hour,
            "source": args.source,
            "max_workers": args.max_workers,
        })
        logger.info(f"Running comparison with {config_to_dict(config)}")

        result = run_comparison(create_source(config), config, first=args.first, second=args.second)
    except ForecastToolsError as e:
        logger.error(f"Comparison failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Comparison failed: {e}", exc_info=True)
        return 1

    print_summary(result)

    if args.csv:
        write_csv(result, args.csv)
    if args.json:
        with open(args.json, 'w') as f:
            json.dump({"config": config_to_dict(config), **result.to_dict()}, f, indent=2)
        logger.info(f"Wrote {args.json}")
    if args.plot:
        plot_comparison(result, args.plot)

    return 0


if __name__ == '__main__':
    sys.exit(main())
