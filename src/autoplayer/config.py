from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path
import tomllib


GAME_CHOICES = ("auto", "dino", "snake", "tictactoe")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class RuntimeConfig:
    state_file: str
    events_file: str
    status_file: str


@dataclass(frozen=True)
class LoopConfig:
    game: str
    poll_interval_ms: int
    max_cycles: int
    max_invalid_reads: int
    verbose: bool
    dry_run: bool


@dataclass(frozen=True)
class InputConfig:
    window_title: str
    fallback_titles: list[str]
    min_interval_ms: int
    send_timeout_seconds: float
    activate_delay_seconds: float


@dataclass(frozen=True)
class DinoEngineConfig:
    jump_distance_min: int
    jump_distance_max: int
    bat_safe_distance: int
    jump_cooldown_ms: int


@dataclass(frozen=True)
class SnakeEngineConfig:
    turn_cooldown_ms: int


@dataclass(frozen=True)
class TicTacToeEngineConfig:
    move_cooldown_ms: int


@dataclass(frozen=True)
class EnginesConfig:
    dino: DinoEngineConfig
    snake: SnakeEngineConfig
    tictactoe: TicTacToeEngineConfig


@dataclass(frozen=True)
class AppConfig:
    project_root: Path
    runtime: RuntimeConfig
    loop: LoopConfig
    input: InputConfig
    engines: EnginesConfig

    def resolve(self, rel_or_abs: str) -> Path:
        expanded = os.path.expandvars(str(rel_or_abs))
        path = Path(expanded).expanduser()
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


def _str_list(raw: object, *, default: list[str], where: str) -> list[str]:
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ConfigError(f"{where} must be a list of strings (got {raw!r})")
    out: list[str] = []
    for item in raw:
        token = item.strip()
        if token:
            out.append(token)
    return out or list(default)


def _detect_project_root(cfg_path: Path) -> Path:
    direct_parent = cfg_path.parent
    if direct_parent.name == "config":
        return direct_parent.parent.resolve()

    for candidate in [direct_parent, *direct_parent.parents]:
        if (candidate / "src" / "autoplayer").exists():
            return candidate.resolve()
    return direct_parent.resolve()


def _table(payload: dict, name: str) -> dict:
    raw = payload.get(name, {})
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table (got {type(raw).__name__})")
    return raw


def _int(section: dict, key: str, default: int, *, where: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{where}.{key} must be an integer (got {raw!r})")
    return raw


def _float(section: dict, key: str, default: float, *, where: str) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ConfigError(f"{where}.{key} must be a number (got {raw!r})")
    return float(raw)


def _bool(section: dict, key: str, default: bool, *, where: str) -> bool:
    raw = section.get(key, default)
    if not isinstance(raw, bool):
        raise ConfigError(f"{where}.{key} must be true or false (got {raw!r})")
    return raw


def _str(section: dict, key: str, default: str, *, where: str) -> str:
    raw = section.get(key, default)
    if not isinstance(raw, str):
        raise ConfigError(f"{where}.{key} must be a string (got {raw!r})")
    return raw


def _build_config(payload: dict, project_root: Path) -> AppConfig:
    runtime = _table(payload, "runtime")
    loop = _table(payload, "loop")
    key_input = _table(payload, "input")
    engines = _table(payload, "engines")
    dino = _table(engines, "dino")
    snake = _table(engines, "snake")
    tictactoe = _table(engines, "tictactoe")

    return AppConfig(
        project_root=project_root,
        runtime=RuntimeConfig(
            state_file=_str(runtime, "state_file", "likubuddy-state.txt", where="runtime"),
            events_file=_str(runtime, "events_file", "runtime/events/autoplay_events.jsonl", where="runtime"),
            status_file=_str(runtime, "status_file", "runtime/autoplay_status.json", where="runtime"),
        ),
        loop=LoopConfig(
            game=_str(loop, "game", "auto", where="loop").strip().lower(),
            poll_interval_ms=_int(loop, "poll_interval_ms", 30, where="loop"),
            max_cycles=_int(loop, "max_cycles", 0, where="loop"),
            max_invalid_reads=_int(loop, "max_invalid_reads", 5, where="loop"),
            verbose=_bool(loop, "verbose", False, where="loop"),
            dry_run=_bool(loop, "dry_run", False, where="loop"),
        ),
        input=InputConfig(
            window_title=_str(key_input, "window_title", "LikuBuddy Game Hub", where="input"),
            fallback_titles=_str_list(
                key_input.get("fallback_titles", ["Liku", "node"]),
                default=["Liku", "node"],
                where="input.fallback_titles",
            ),
            min_interval_ms=_int(key_input, "min_interval_ms", 30, where="input"),
            send_timeout_seconds=_float(key_input, "send_timeout_seconds", 0.5, where="input"),
            activate_delay_seconds=_float(key_input, "activate_delay_seconds", 0.0, where="input"),
        ),
        engines=EnginesConfig(
            dino=DinoEngineConfig(
                jump_distance_min=_int(dino, "jump_distance_min", 2, where="engines.dino"),
                jump_distance_max=_int(dino, "jump_distance_max", 7, where="engines.dino"),
                bat_safe_distance=_int(dino, "bat_safe_distance", 3, where="engines.dino"),
                jump_cooldown_ms=_int(dino, "jump_cooldown_ms", 400, where="engines.dino"),
            ),
            snake=SnakeEngineConfig(
                turn_cooldown_ms=_int(snake, "turn_cooldown_ms", 60, where="engines.snake"),
            ),
            tictactoe=TicTacToeEngineConfig(
                move_cooldown_ms=_int(tictactoe, "move_cooldown_ms", 150, where="engines.tictactoe"),
            ),
        ),
    )


def default_config(project_root: str | Path | None = None) -> AppConfig:
    root = Path(project_root).expanduser().resolve() if project_root is not None else Path.cwd().resolve()
    return _build_config({}, root)


def load_config(path: str | Path) -> AppConfig:
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    try:
        with cfg_path.open("rb") as fh:
            payload = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"malformed TOML in {cfg_path}: {exc}") from exc

    try:
        return _build_config(payload, _detect_project_root(cfg_path))
    except (AttributeError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value in {cfg_path}: {exc}") from exc


def validate_config(cfg: AppConfig) -> AppConfig:
    """Reject settings the control loop cannot honour.

    Values are checked as given; nothing is clamped into range.
    """
    problems: list[str] = []
    loop = cfg.loop
    if loop.game not in GAME_CHOICES:
        problems.append(f"loop.game must be one of {', '.join(GAME_CHOICES)} (got {loop.game!r})")
    if loop.poll_interval_ms <= 0:
        problems.append(f"loop.poll_interval_ms must be > 0 (got {loop.poll_interval_ms})")
    if loop.max_cycles < 0:
        problems.append(f"loop.max_cycles must be >= 0, 0 means unlimited (got {loop.max_cycles})")
    if loop.max_invalid_reads < 1:
        problems.append(f"loop.max_invalid_reads must be >= 1 (got {loop.max_invalid_reads})")

    key_input = cfg.input
    if not key_input.window_title.strip():
        problems.append("input.window_title must not be empty")
    if key_input.min_interval_ms < 0:
        problems.append(f"input.min_interval_ms must be >= 0 (got {key_input.min_interval_ms})")
    if key_input.send_timeout_seconds <= 0.0:
        problems.append(f"input.send_timeout_seconds must be > 0 (got {key_input.send_timeout_seconds})")
    if key_input.activate_delay_seconds < 0.0:
        problems.append(f"input.activate_delay_seconds must be >= 0 (got {key_input.activate_delay_seconds})")

    dino = cfg.engines.dino
    if dino.jump_distance_min < 0:
        problems.append(f"engines.dino.jump_distance_min must be >= 0 (got {dino.jump_distance_min})")
    if dino.jump_distance_max < dino.jump_distance_min:
        problems.append(
            "engines.dino.jump_distance_max must be >= jump_distance_min "
            f"(got {dino.jump_distance_max} < {dino.jump_distance_min})"
        )
    if dino.bat_safe_distance < 0:
        problems.append(f"engines.dino.bat_safe_distance must be >= 0 (got {dino.bat_safe_distance})")
    if dino.jump_cooldown_ms < 0:
        problems.append(f"engines.dino.jump_cooldown_ms must be >= 0 (got {dino.jump_cooldown_ms})")
    if cfg.engines.snake.turn_cooldown_ms < 0:
        problems.append(f"engines.snake.turn_cooldown_ms must be >= 0 (got {cfg.engines.snake.turn_cooldown_ms})")
    if cfg.engines.tictactoe.move_cooldown_ms < 0:
        problems.append(
            f"engines.tictactoe.move_cooldown_ms must be >= 0 (got {cfg.engines.tictactoe.move_cooldown_ms})"
        )

    if problems:
        raise ConfigError("; ".join(problems))
    return cfg


def with_overrides(
    cfg: AppConfig,
    *,
    game: str | None = None,
    poll_interval_ms: int | None = None,
    max_cycles: int | None = None,
    verbose: bool | None = None,
    dry_run: bool | None = None,
    state_file: str | None = None,
) -> AppConfig:
    loop = cfg.loop
    if game is not None:
        loop = replace(loop, game=str(game).strip().lower())
    if poll_interval_ms is not None:
        loop = replace(loop, poll_interval_ms=int(poll_interval_ms))
    if max_cycles is not None:
        loop = replace(loop, max_cycles=int(max_cycles))
    if verbose is not None:
        loop = replace(loop, verbose=bool(verbose))
    if dry_run is not None:
        loop = replace(loop, dry_run=bool(dry_run))

    runtime = cfg.runtime
    if state_file:
        runtime = replace(runtime, state_file=str(state_file))
    return replace(cfg, loop=loop, runtime=runtime)
