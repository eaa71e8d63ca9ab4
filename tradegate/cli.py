"""Command line entry point.

Every command prints JSON on stdout; logs go to stderr.

    python -m tradegate scan --limit 5
    python -m tradegate positions
    python -m tradegate check 0.25
    python -m tradegate tradable <mint>
    python -m tradegate monitor --interval 30 --auto-exit
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, List, Optional

from tradegate.config import TradeGateConfig
from tradegate.engine import TradeEngine, build_engine
from tradegate.errors import TradeGateError
from tradegate.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradegate", description="Risk-gated Solana trade decision engine")
    parser.add_argument("--keypair", help="Path to a JSON keypair file (default: SOLANA_PRIVATE_KEY)")
    parser.add_argument("--dry-run", action="store_true", help="Paper mode: quote but never send swaps")
    parser.add_argument("--log-level", help="Override TRADEGATE_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Discover and rank boosted tokens")
    scan.add_argument("--limit", type=int, default=10)

    sub.add_parser("positions", help="Show open positions")

    check = sub.add_parser("check", help="Ask the safety gate about a trade size")
    check.add_argument("amount", type=float, help="Trade size in SOL")

    tradable = sub.add_parser("tradable", help="Probe whether a token has a swap route")
    tradable.add_argument("address")

    monitor = sub.add_parser("monitor", help="Watch open positions for stop-loss / take-profit")
    monitor.add_argument("--interval", type=float, default=15.0)
    monitor.add_argument("--auto-exit", action="store_true", help="Sell through the orchestrator when triggered")

    return parser


async def _scan(engine: TradeEngine, args: argparse.Namespace) -> Any:
    candidates = await engine.market.discover()
    return [c.to_dict() for c in candidates[: args.limit]]


async def _positions(engine: TradeEngine, args: argparse.Namespace) -> Any:
    return {
        "count": engine.ledger.count(),
        "positions": [p.to_dict() for p in engine.ledger.all()],
    }


async def _check(engine: TradeEngine, args: argparse.Namespace) -> Any:
    verdict = engine.gate.can_trade(args.amount)
    return {"allowed": verdict.allowed, "reason": verdict.reason, "state": engine.gate.snapshot()}


async def _tradable(engine: TradeEngine, args: argparse.Namespace) -> Any:
    result = await engine.gate.is_tradable(args.address)
    return {"address": args.address, **result.to_dict()}


async def _monitor(engine: TradeEngine, args: argparse.Namespace) -> Any:
    monitor = engine.monitor(auto_exit=args.auto_exit)
    try:
        await monitor.run(args.interval, on_signal=lambda signal: _print(signal.to_dict()))
    except asyncio.CancelledError:
        pass
    return None


COMMANDS = {
    "scan": _scan,
    "positions": _positions,
    "check": _check,
    "tradable": _tradable,
    "monitor": _monitor,
}


async def run(args: argparse.Namespace, config: TradeGateConfig) -> int:
    engine = build_engine(config, keypair_path=args.keypair)
    try:
        payload = await COMMANDS[args.command](engine, args)
    except TradeGateError as e:
        _print({"success": False, "error": e.to_dict()})
        return 1
    finally:
        await engine.close()

    if payload is not None:
        _print(payload)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = TradeGateConfig.from_env()
    except TradeGateError as e:
        _print({"success": False, "error": e.to_dict()})
        return 2

    if args.dry_run:
        config.dry_run = True
    if args.log_level:
        config.log_level = args.log_level.upper()
    setup_logging(config.log_level, json_format=config.log_json)

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
