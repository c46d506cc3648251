from __future__ import annotations

import argparse
import json
from pathlib import Path
import signal
import sys

from .config import GAME_CHOICES, AppConfig, ConfigError, default_config, load_config, validate_config, with_overrides
from .control_loop import ControlLoop
from .engines import EngineSet, key_for_action
from .key_input import create_injector
from .snapshot import SnapshotParser, detect_game


def _default_config_path() -> Path:
    here = Path(__file__).resolve()
    return here.parents[2] / "config" / "settings.toml"


def _load(args: argparse.Namespace) -> AppConfig:
    path = Path(args.config)
    if path.exists():
        cfg = load_config(path)
    elif args.config == str(_default_config_path()):
        cfg = default_config()
    else:
        raise FileNotFoundError(f"Config file not found: {path}")
    return with_overrides(cfg, state_file=getattr(args, "state_file", "") or None)


def cmd_run(args: argparse.Namespace) -> int:
    cfg = _load(args)
    cfg = validate_config(
        with_overrides(
            cfg,
            game=args.game,
            poll_interval_ms=args.poll,
            max_cycles=args.max_cycles,
            verbose=True if args.verbose else None,
            dry_run=True if args.dry_run else None,
        )
    )

    print("autoplayer: fast polling controller")
    print(f"  Game: {cfg.loop.game}")
    print(f"  Poll interval: {cfg.loop.poll_interval_ms}ms")
    print(f"  Dry run: {cfg.loop.dry_run}")
    print(f"  State file: {cfg.resolve(cfg.runtime.state_file)}")
    print("  Press Ctrl+C to stop")

    loop = ControlLoop(cfg)

    def _handle_signal(signum: int, _frame: object) -> None:
        loop.stop(f"signal:{signal.Signals(signum).name}")

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle_signal)
    try:
        stats = loop.run()
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    cfg = _load(args)
    parser = SnapshotParser(cfg.resolve(cfg.runtime.state_file))
    snapshot = parser.parse(force_refresh=True)
    if snapshot is None:
        print(json.dumps({"status": "missing", "path": str(parser.state_path)}, indent=2))
        return 1
    print(json.dumps(snapshot.to_dict(include_raw=bool(args.raw)), indent=2))
    return 0


def cmd_decide(args: argparse.Namespace) -> int:
    cfg = validate_config(with_overrides(_load(args), game=args.game))
    parser = SnapshotParser(cfg.resolve(cfg.runtime.state_file))
    snapshot = parser.parse(force_refresh=True)
    if snapshot is None:
        print(json.dumps({"status": "missing", "path": str(parser.state_path)}, indent=2))
        return 1
    game = detect_game(snapshot.screen) if cfg.loop.game == "auto" else cfg.loop.game
    decision = EngineSet.from_config(cfg.engines).decide(game, snapshot)
    payload = {
        "game": game,
        "pid": snapshot.pid,
        "pid_valid": snapshot.pid_valid,
        "decision": decision.to_dict(),
        "key": key_for_action(decision.action),
    }
    print(json.dumps(payload, indent=2))
    return 0


def cmd_send_key(args: argparse.Namespace) -> int:
    cfg = validate_config(_load(args))
    injector = create_injector(cfg.input, target_pid=(args.pid if args.pid > 0 else None))
    ok = injector.send(args.key)
    payload = {
        "ok": ok,
        "key": args.key,
        "injector": injector.platform_name,
        "window": injector.last_window,
        "error": injector.last_error,
    }
    print(json.dumps(payload, indent=2))
    return 0 if ok else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Terminal game hub auto-player")
    parser.add_argument("--config", default=str(_default_config_path()))
    parser.add_argument("--state-file", default="", help="Override runtime.state_file")
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="Run the polling control loop")
    p_run.add_argument("--game", "-g", choices=list(GAME_CHOICES), default=None, help="Game to play (default: auto)")
    p_run.add_argument("--poll", "-p", type=int, default=None, help="Polling interval in ms (default: 30)")
    p_run.add_argument("--verbose", "-v", action="store_true", help="Echo events and decisions as JSON lines")
    p_run.add_argument("--dry-run", "-d", action="store_true", help="Decide without sending keys")
    p_run.add_argument("--max-cycles", "-m", type=int, default=None, help="Stop after N cycles, 0 means unlimited")
    p_run.add_argument("--json", action="store_true", help="Print final stats as JSON as well")
    p_run.set_defaults(func=cmd_run)

    p_snapshot = sub.add_parser("snapshot", help="Parse the state file once and print it")
    p_snapshot.add_argument("--raw", action="store_true", help="Include the raw state text")
    p_snapshot.set_defaults(func=cmd_snapshot)

    p_decide = sub.add_parser("decide", help="Print the engine decision for the current state without sending keys")
    p_decide.add_argument("--game", "-g", choices=list(GAME_CHOICES), default=None)
    p_decide.set_defaults(func=cmd_decide)

    p_key = sub.add_parser("send-key", help="Send one key to the game window")
    p_key.add_argument("key", help="up, down, left, right, enter, escape, space or a single character")
    p_key.add_argument("--pid", type=int, default=0, help="Target process id for exact window matching")
    p_key.set_defaults(func=cmd_send_key)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except (ConfigError, FileNotFoundError) as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
