"""Command line entry point: watch a session, read state, show the leaderboard."""

import argparse
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import structlog

from .config import Config, find_config, load_config
from .director import SessionDirector
from .events import EventCodec
from .exceptions import HexedError
from .ledger import JsonRpcLedger
from .logging import SessionLogWriter
from .persistence import GameIdStore
from .reconcile import ReconciliationLoop
from .state import SessionPhase
from .transaction import TransactionExecutor
from .viewer_ws import ViewerWebSocketService

logger = structlog.get_logger()


def build_codec(config: Config) -> EventCodec:
    if config.ledger.manifest_path is None:
        logger.warning("no_event_manifest", detail="receipt events will decode as unknown")
        return EventCodec()
    return EventCodec.from_manifest(config.ledger.manifest_path, config.ledger.namespace)


async def run_watch(config: Config, address: str, log_dir: Path | None) -> None:
    """Resume the address's game and reconcile until it ends or is interrupted."""
    async with JsonRpcLedger(config.ledger) as ledger:
        executor = TransactionExecutor(ledger, build_codec(config), config.transactions)
        store = GameIdStore(Path(config.session.storage_path), config.session.storage_key_prefix)

        log_writer = None
        if log_dir is not None:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            log_writer = SessionLogWriter(log_dir / f"session_{stamp}", config.replay.buffer_size)

        director = SessionDirector(ledger, executor, config, store, log_writer)
        viewer = None
        if config.viewer.enabled:
            viewer = ViewerWebSocketService(director, config.viewer.host, config.viewer.port)
            await viewer.start()

        loop = ReconciliationLoop(director, config.reconcile, log_writer)
        try:
            phase = await director.initialize(address)
            if phase is not SessionPhase.ACTIVE:
                logger.info(
                    "nothing_to_watch",
                    address=address,
                    phase=phase.value,
                    death_reason=director.state.death_reason,
                )
                return
            await loop.run()
            if director.state.is_dead:
                logger.info(
                    "game_over",
                    game_id=director.state.game_id,
                    xp=director.state.death_xp,
                    reason=director.state.death_reason,
                )
        finally:
            loop.stop()
            await director.drain()
            if log_writer is not None:
                log_writer.close()
            if viewer is not None:
                await viewer.stop()


async def run_state(config: Config, game_id: int) -> None:
    async with JsonRpcLedger(config.ledger) as ledger:
        view = await ledger.get_game_state(game_id)
    if view is None:
        print(f"Game {game_id} not found")
        return
    print(json.dumps(view.model_dump(mode="json"), indent=2))


async def run_highscore(config: Config) -> None:
    async with JsonRpcLedger(config.ledger) as ledger:
        score = await ledger.get_highest_score()
    if score is None:
        print("No score registered yet")
        return
    name = score.username or score.player
    print(f"{name}: {score.xp} XP")


def main() -> None:
    """CLI entry point for the hexed client."""
    parser = argparse.ArgumentParser(description="Hexed ledger client")
    parser.add_argument("--config", type=str, help="Config name or path to TOML file")
    parser.add_argument("--rpc-url", type=str, help="JSON-RPC endpoint (overrides config)")
    parser.add_argument("--contract", type=str, help="Game contract address (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Resume a session and reconcile until it ends")
    watch.add_argument("--address", required=True, help="Player address")
    watch.add_argument("--interval-ms", type=int, help="Reconciliation interval (overrides config)")
    watch.add_argument("--viewer", action="store_true", help="Serve the WebSocket state feed")
    watch.add_argument("--ws-port", type=int, help="WebSocket port for viewers (overrides config)")
    watch.add_argument("--log-dir", type=str, help="Write a Parquet replay log here")

    state = sub.add_parser("state", help="Print one aggregate read of a game")
    state.add_argument("--game-id", type=int, required=True)

    sub.add_parser("highscore", help="Print the top leaderboard entry")

    args = parser.parse_args()

    if args.config:
        try:
            config = load_config(find_config(args.config))
        except FileNotFoundError as e:
            parser.error(str(e))
    else:
        config = Config()

    if args.rpc_url:
        config.ledger.rpc_url = args.rpc_url
    if args.contract:
        config.ledger.game_contract = args.contract

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(10 if args.verbose else 20),
    )

    try:
        if args.command == "watch":
            if args.interval_ms is not None:
                config.reconcile.interval_ms = args.interval_ms
            if args.viewer:
                config.viewer.enabled = True
            if args.ws_port is not None:
                config.viewer.port = args.ws_port
            log_dir = None
            if args.log_dir:
                log_dir = Path(args.log_dir)
            elif config.replay.enabled:
                log_dir = Path(config.replay.log_dir)
            asyncio.run(run_watch(config, args.address, log_dir))
        elif args.command == "state":
            asyncio.run(run_state(config, args.game_id))
        elif args.command == "highscore":
            asyncio.run(run_highscore(config))
    except KeyboardInterrupt:
        logger.info("interrupted")
    except HexedError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
