from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import UTC, date, datetime
from pathlib import Path

from redis.asyncio import Redis

from edgeline.core.config import get_settings
from edgeline.core.database import AsyncSessionLocal
from edgeline.core.errors import ConfigurationError
from edgeline.core.frozen_config import get_frozen_model_config
from edgeline.core.logging import setup_logging
from edgeline.services.calibration import (
    CalibrationTable,
    build_calibration_table,
    calibration_results_from_history,
    format_calibration_report,
)
from edgeline.services.clv import compute_and_persist_clv
from edgeline.services.edges import materialize_edges
from edgeline.services.orchestrator import SyncConfig, run_odds_sync
from edgeline.services.ratings import import_external_ratings, update_season_ratings
from edgeline.services.reference_data import import_games, import_teams

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    return date.fromisoformat(value.strip())


def _parse_utc_datetime(value: str) -> datetime:
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate.replace("Z", "+00:00")
    parsed = datetime.fromisoformat(candidate)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_markets(value: str) -> tuple[str, ...]:
    allowed = {"spreads", "totals"}
    markets = tuple(part.strip() for part in value.split(",") if part.strip())
    if not markets:
        raise argparse.ArgumentTypeError("At least one market is required")
    invalid = [market for market in markets if market not in allowed]
    if invalid:
        raise argparse.ArgumentTypeError(f"Unsupported markets: {','.join(sorted(set(invalid)))}")
    return markets


def _load_json_list(path: str) -> list[dict]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read input file {path}: {exc}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError(f"Input file {path} must contain a JSON list")
    return [item for item in payload if isinstance(item, dict)]


def _build_arg_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="edgeline operational CLI")
    subparsers = parser.add_subparsers(dest="command")

    teams_parser = subparsers.add_parser("import-teams", help="Upsert teams, aliases and name mappings from JSON")
    teams_parser.add_argument("path")

    games_parser = subparsers.add_parser("import-games", help="Upsert games and final results from JSON")
    games_parser.add_argument("path")
    games_parser.add_argument("--source", default="schedule", help="Identity source for team names")

    ratings_import_parser = subparsers.add_parser("import-ratings", help="Load external ratings (e.g. SP+) from JSON")
    ratings_import_parser.add_argument("path")
    ratings_import_parser.add_argument("--source", default="sp")

    ratings_parser = subparsers.add_parser("update-ratings", help="Replay a season and write weekly rating snapshots")
    ratings_parser.add_argument("--season", type=int, required=True)

    sync_parser = subparsers.add_parser("sync-odds", help="Backfill historical odds over a date range")
    sync_parser.add_argument("--start", type=_parse_date, required=True, help="First date partition (YYYY-MM-DD)")
    sync_parser.add_argument("--end", type=_parse_date, required=True, help="Last date partition (YYYY-MM-DD)")
    sync_parser.add_argument("--sport-key", default=settings.odds_api_sport_key)
    sync_parser.add_argument("--provider", default=settings.odds_api_bookmakers.split(",")[0].strip())
    sync_parser.add_argument("--markets", type=_parse_markets, default=tuple(settings.odds_api_markets_list))
    sync_parser.add_argument("--regions", default=None)
    sync_parser.add_argument("--sync-type", default="odds_history")

    edges_parser = subparsers.add_parser("materialize-edges", help="Score upcoming games against the market")
    edges_parser.add_argument("--as-of", type=_parse_utc_datetime, default=None)
    edges_parser.add_argument("--provider", default=settings.odds_api_bookmakers.split(",")[0].strip())
    edges_parser.add_argument("--lookahead-days", type=int, default=settings.edge_lookahead_days)

    clv_parser = subparsers.add_parser("compute-clv", help="Record closing line value for finished games")
    clv_parser.add_argument("--provider", default=None)

    report_parser = subparsers.add_parser("calibration-report", help="Print a calibration table")
    report_parser.add_argument(
        "--from-history",
        action="store_true",
        help="Grade stored edges of finished games instead of using the frozen table",
    )

    return parser


def _print(summary: object) -> None:
    print(json.dumps(summary, indent=2, sort_keys=True, default=str))


async def _run_import_teams(path: str) -> int:
    entries = _load_json_list(path)
    async with AsyncSessionLocal() as db:
        _print(await import_teams(db, entries))
    return 0


async def _run_import_games(path: str, source: str) -> int:
    entries = _load_json_list(path)
    async with AsyncSessionLocal() as db:
        _print(await import_games(db, entries, source=source))
    return 0


async def _run_import_ratings(path: str, source: str) -> int:
    entries = _load_json_list(path)
    async with AsyncSessionLocal() as db:
        _print(await import_external_ratings(db, entries, source=source))
    return 0


async def _run_update_ratings(season: int) -> int:
    config = get_frozen_model_config(get_settings().frozen_config_path)
    async with AsyncSessionLocal() as db:
        _print(await update_season_ratings(db, season=season, config=config))
    return 0


async def _run_sync(args: argparse.Namespace) -> int:
    settings = get_settings()
    config = SyncConfig(
        start=args.start,
        end=args.end,
        sport_key=args.sport_key,
        provider=args.provider,
        markets=args.markets,
        regions=args.regions,
        sync_type=args.sync_type,
    )
    redis = Redis.from_url(settings.redis_url, decode_responses=True) if settings.redis_url else None
    try:
        async with AsyncSessionLocal() as db:
            summary = await run_odds_sync(db, config=config, settings=settings, redis=redis)
    finally:
        if redis is not None:
            await redis.aclose()
    _print(summary.as_dict())
    return 0 if not summary.failed_partitions else 2


async def _run_materialize(args: argparse.Namespace) -> int:
    config = get_frozen_model_config(get_settings().frozen_config_path)
    calibration = CalibrationTable.from_config(config.calibration)
    as_of = args.as_of or datetime.now(UTC)
    async with AsyncSessionLocal() as db:
        summary = await materialize_edges(
            db,
            as_of=as_of,
            provider=args.provider,
            config=config,
            calibration=calibration,
            lookahead_days=max(1, args.lookahead_days),
        )
    _print(summary)
    return 0


async def _run_compute_clv(provider: str | None) -> int:
    async with AsyncSessionLocal() as db:
        _print(await compute_and_persist_clv(db, provider=provider))
    return 0


async def _run_calibration_report(from_history: bool) -> int:
    config = get_frozen_model_config(get_settings().frozen_config_path)
    if from_history:
        async with AsyncSessionLocal() as db:
            results = await calibration_results_from_history(db)
        table = build_calibration_table(results, min_samples=config.calibration.min_samples)
    else:
        table = CalibrationTable.from_config(config.calibration)
    print(format_calibration_report(table))
    return 0


async def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "import-teams":
        return await _run_import_teams(args.path)
    if args.command == "import-games":
        return await _run_import_games(args.path, args.source)
    if args.command == "import-ratings":
        return await _run_import_ratings(args.path, args.source)
    if args.command == "update-ratings":
        return await _run_update_ratings(args.season)
    if args.command == "sync-odds":
        return await _run_sync(args)
    if args.command == "materialize-edges":
        return await _run_materialize(args)
    if args.command == "compute-clv":
        return await _run_compute_clv(args.provider)
    if args.command == "calibration-report":
        return await _run_calibration_report(args.from_history)
    raise ValueError(f"Unknown command: {args.command}")


def main() -> int:
    setup_logging()
    parser = _build_arg_parser()
    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return 1
    try:
        return asyncio.run(_dispatch(args))
    except ConfigurationError as exc:
        logger.error("Configuration error", extra={"error": str(exc)})
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
