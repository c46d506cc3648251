from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
import re
import time
from typing import Any, Union


GAME_DINO = "dino"
GAME_SNAKE = "snake"
GAME_TICTACTOE = "tictactoe"
GAME_MENU = "menu"
GAME_UNKNOWN = "unknown"

DINO_PHASES = ("START", "COUNTDOWN", "PLAYING", "GAME_OVER")

ACTION_JUMP = "jump"
ACTION_MOVE_UP = "move_up"
ACTION_MOVE_DOWN = "move_down"
ACTION_MOVE_LEFT = "move_left"
ACTION_MOVE_RIGHT = "move_right"
ACTION_CONFIRM = "confirm"
ACTION_WAIT = "wait"
ACTION_START = "start"
ACTION_RESTART = "restart"
ACTION_NONE = "none"

ACTIONS = frozenset(
    {
        ACTION_JUMP,
        ACTION_MOVE_UP,
        ACTION_MOVE_DOWN,
        ACTION_MOVE_LEFT,
        ACTION_MOVE_RIGHT,
        ACTION_CONFIRM,
        ACTION_WAIT,
        ACTION_START,
        ACTION_RESTART,
        ACTION_NONE,
    }
)

# Actions that never produce a key press.
PASSIVE_ACTIONS = frozenset({ACTION_WAIT, ACTION_NONE})

NO_OBSTACLE_DISTANCE = 999
ROLLING_WINDOW_CYCLES = 100

_SCORE_RE = re.compile(r"Score:\s*(\d+)")


@dataclass(frozen=True)
class DinoPlayer:
    y: int
    velocity: float

    @property
    def is_jumping(self) -> bool:
        return self.y > 0 or self.velocity > 0


@dataclass(frozen=True)
class Obstacle:
    distance: int
    type: str
    y: int
    should_jump: bool = False

    @property
    def is_none(self) -> bool:
        return self.type == "NONE"


@dataclass(frozen=True)
class DinoState:
    phase: str
    countdown: int = 0
    dino: DinoPlayer | None = None
    obstacle: Obstacle | None = None


@dataclass(frozen=True)
class SnakeState:
    direction: str = "RIGHT"
    food_dx: int = 0
    food_dy: int = 0
    danger: bool = False
    game_over: bool = False


@dataclass(frozen=True)
class TicTacToeState:
    board: tuple[str, ...] = ("",) * 9
    cursor: int = 4
    turn: str = "O"
    game_over: bool = False
    winner: str | None = None


@dataclass(frozen=True)
class MenuItem:
    text: str
    selected: bool


@dataclass(frozen=True)
class MenuState:
    items: tuple[MenuItem, ...] = ()
    selected_index: int = -1


GameDetail = Union[DinoState, SnakeState, TicTacToeState, MenuState]

_DETAIL_TYPES: dict[str, type] = {
    GAME_DINO: DinoState,
    GAME_SNAKE: SnakeState,
    GAME_TICTACTOE: TicTacToeState,
    GAME_MENU: MenuState,
}


@dataclass(frozen=True)
class StateSnapshot:
    """One reconstructed view of the monitored game hub.

    ``game`` tags which payload ``detail`` carries. A snapshot without a pid
    is low-confidence: it is never live and carries no game payload.
    """

    timestamp: float
    pid: int | None
    pid_valid: bool
    screen: str
    status: str
    raw: str
    game: str = GAME_UNKNOWN
    detail: GameDetail | None = None

    def __post_init__(self) -> None:
        if self.pid is None and (self.pid_valid or self.detail is not None or self.game != GAME_UNKNOWN):
            raise ValueError("snapshot without pid cannot carry liveness or game data")
        expected = _DETAIL_TYPES.get(self.game)
        if self.detail is not None and (expected is None or not isinstance(self.detail, expected)):
            raise ValueError(f"detail {type(self.detail).__name__} does not match game {self.game!r}")

    @property
    def reliable(self) -> bool:
        return self.pid is not None

    @property
    def dino(self) -> DinoState | None:
        return self.detail if self.game == GAME_DINO else None  # type: ignore[return-value]

    @property
    def snake(self) -> SnakeState | None:
        return self.detail if self.game == GAME_SNAKE else None  # type: ignore[return-value]

    @property
    def tictactoe(self) -> TicTacToeState | None:
        return self.detail if self.game == GAME_TICTACTOE else None  # type: ignore[return-value]

    @property
    def menu(self) -> MenuState | None:
        return self.detail if self.game == GAME_MENU else None  # type: ignore[return-value]

    def to_dict(self, *, include_raw: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": self.timestamp,
            "pid": self.pid,
            "pid_valid": self.pid_valid,
            "screen": self.screen,
            "status": self.status,
            "game": self.game,
            "detail": asdict(self.detail) if self.detail is not None else None,
        }
        if include_raw:
            payload["raw"] = self.raw
        return payload


@dataclass(frozen=True)
class Decision:
    action: str
    confidence: float
    reason: str

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"unknown_action:{self.action}")
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))

    @property
    def is_passive(self) -> bool:
        return self.action in PASSIVE_ACTIONS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunStatistics:
    cycles: int = 0
    key_sends: int = 0
    avg_cycle_ms: float = 0.0
    max_cycle_ms: float = 0.0
    decisions: dict[str, int] = field(default_factory=dict)
    invalid_reads: int = 0
    injection_failures: int = 0
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    game_score: int | None = None
    stop_reason: str = ""
    final_state: str = ""
    _recent_cycle_ms: deque[float] = field(
        default_factory=lambda: deque(maxlen=ROLLING_WINDOW_CYCLES),
        repr=False,
        compare=False,
    )

    def record_cycle(self, elapsed_ms: float) -> None:
        elapsed = max(0.0, float(elapsed_ms))
        self.cycles += 1
        self._recent_cycle_ms.append(elapsed)
        self.avg_cycle_ms = sum(self._recent_cycle_ms) / len(self._recent_cycle_ms)
        self.max_cycle_ms = max(self.max_cycle_ms, elapsed)

    def record_decision(self, action: str) -> None:
        self.decisions[action] = int(self.decisions.get(action, 0)) + 1

    def record_score(self, status: str) -> None:
        match = _SCORE_RE.search(str(status or ""))
        if match:
            self.game_score = int(match.group(1))

    def finish(self, *, stop_reason: str, final_state: str, at: float | None = None) -> None:
        self.stop_reason = stop_reason
        self.final_state = final_state
        self.ended_at = at if at is not None else time.time()

    def runtime_seconds(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.time()
        return max(0.0, end - self.started_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "key_sends": self.key_sends,
            "avg_cycle_ms": round(self.avg_cycle_ms, 3),
            "max_cycle_ms": round(self.max_cycle_ms, 3),
            "decisions": dict(self.decisions),
            "invalid_reads": self.invalid_reads,
            "injection_failures": self.injection_failures,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "runtime_seconds": round(self.runtime_seconds(), 3),
            "game_score": self.game_score,
            "stop_reason": self.stop_reason,
            "final_state": self.final_state,
        }

    def summary_lines(self) -> list[str]:
        lines = [
            "Final stats:",
            f"  Total cycles: {self.cycles}",
            f"  Keys sent: {self.key_sends}",
            f"  Avg cycle time: {self.avg_cycle_ms:.1f}ms",
            f"  Max cycle time: {self.max_cycle_ms:.1f}ms",
            f"  Runtime: {self.runtime_seconds():.1f}s",
        ]
        if self.game_score is not None:
            lines.append(f"  Last score: {self.game_score}")
        if self.stop_reason:
            lines.append(f"  Stop reason: {self.stop_reason}")
        return lines
