#!/usr/bin/env python
"""
Session Navigator - Backtest Runner

Replays a CSV of intraday bars through the signal engine and prints
per-pattern results.
"""

import argparse
import logging
import sys
from pathlib import Path

from navigator.backtest import chart_frame, load_bars_csv, print_results, run_backtest, trades_to_frame
from navigator.config import DEFAULT_CONFIG_PATH, EngineConfig, load_yaml
from navigator.errors import NavigatorError


def setup_logging(settings: dict, override: str = None):
    """Configure root logging from the `logging:` config section"""
    level = (override or settings.get('level', 'info')).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=settings.get('format', '%(asctime)s - %(levelname)s - %(message)s')
    )


def print_startup_banner(args, config: EngineConfig):
    """Print run information"""
    ses = config.sessions
    print("\n" + "=" * 70)
    print("  Session Navigator Backtest")
    print("=" * 70)
    print(f"  Bars: {args.bars}")
    print(f"  Symbol: {args.symbol or '-'}")
    print(f"  Session: {ses.session_open}-{ses.session_close} {ses.timezone}")
    print(f"  Entry window: {ses.entry_start}-{ses.entry_end}, time exit {ses.time_exit}")
    print("=" * 70 + "\n")


def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Replay intraday bars through the session navigator signal engine'
    )
    parser.add_argument(
        '--bars',
        type=str,
        required=True,
        help='CSV file with time/open/high/low/close/volume columns'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help='YAML configuration file'
    )
    parser.add_argument(
        '--symbol',
        type=str,
        default='',
        help='Instrument symbol stamped on orders'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['debug', 'info', 'warning', 'error', 'critical'],
        help='Override log level from config'
    )
    parser.add_argument(
        '--trades-out',
        type=str,
        help='Write the trade list to this CSV'
    )
    parser.add_argument(
        '--snapshots-out',
        type=str,
        help='Write per-bar diagnostics and indicator columns to this CSV'
    )

    args = parser.parse_args(argv)

    try:
        raw = load_yaml(args.config)
        setup_logging(raw.get('logging') or {}, args.log_level)
        config = EngineConfig.from_dict(raw.get('engine'))
    except NavigatorError as e:
        print(f"Error loading configuration: {e}")
        return 1

    print_startup_banner(args, config)

    try:
        bars = load_bars_csv(args.bars, config.sessions.timezone)
        result = run_backtest(bars, config, args.symbol)
    except (NavigatorError, OSError) as e:
        print(f"\nError running backtest: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nInterrupted.")
        return 1

    print_results(result)

    if args.trades_out:
        trades_to_frame(result.trades).to_csv(args.trades_out, index=False)
        print(f"Trades written to {Path(args.trades_out).resolve()}")
    if args.snapshots_out:
        chart_frame(bars, result.snapshots, config).to_csv(args.snapshots_out, index=False)
        print(f"Snapshots written to {Path(args.snapshots_out).resolve()}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
