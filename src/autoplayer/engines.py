from __future__ import annotations

import time
from typing import Callable, Protocol

from .config import EnginesConfig
from .models import (
    ACTION_CONFIRM,
    ACTION_JUMP,
    ACTION_MOVE_DOWN,
    ACTION_MOVE_LEFT,
    ACTION_MOVE_RIGHT,
    ACTION_MOVE_UP,
    ACTION_NONE,
    ACTION_RESTART,
    ACTION_START,
    ACTION_WAIT,
    GAME_DINO,
    GAME_SNAKE,
    GAME_TICTACTOE,
    Decision,
    StateSnapshot,
)


ACTION_KEYS = {
    ACTION_JUMP: "space",
    ACTION_START: "enter",
    ACTION_RESTART: "enter",
    ACTION_CONFIRM: "enter",
    ACTION_MOVE_UP: "up",
    ACTION_MOVE_DOWN: "down",
    ACTION_MOVE_LEFT: "left",
    ACTION_MOVE_RIGHT: "right",
}

_DIRECTION_ACTIONS = {
    "UP": ACTION_MOVE_UP,
    "DOWN": ACTION_MOVE_DOWN,
    "LEFT": ACTION_MOVE_LEFT,
    "RIGHT": ACTION_MOVE_RIGHT,
}

WIN_LINES = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


def key_for_action(action: str) -> str | None:
    return ACTION_KEYS.get(action)


class DecisionEngine(Protocol):
    def decide(self, snapshot: StateSnapshot) -> Decision: ...

    def reset(self) -> None: ...


class Cooldown:
    """Tracks the last affirmative action of one engine."""

    def __init__(self, cooldown_ms: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown_seconds = max(0, int(cooldown_ms)) / 1000.0
        self._clock = clock
        self.last_action_mono: float | None = None

    def now(self) -> float:
        return self._clock()

    def active(self, now: float) -> bool:
        if self.last_action_mono is None:
            return False
        return (now - self.last_action_mono) < self.cooldown_seconds

    def mark(self, now: float) -> None:
        self.last_action_mono = now

    def reset(self) -> None:
        self.last_action_mono = None


class DinoEngine:
    """Jump timing for the runner game.

    Distances are in grid cells ahead of the player. A jump takes roughly six
    to eight frames, so the default band is [2, 7].
    """

    def __init__(
        self,
        *,
        jump_distance_min: int = 2,
        jump_distance_max: int = 7,
        bat_safe_distance: int = 3,
        jump_cooldown_ms: int = 400,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.jump_distance_min = int(jump_distance_min)
        self.jump_distance_max = int(jump_distance_max)
        self.bat_safe_distance = int(bat_safe_distance)
        self.cooldown = Cooldown(jump_cooldown_ms, clock=clock)

    def decide(self, snapshot: StateSnapshot) -> Decision:
        state = snapshot.dino
        if state is None:
            return Decision(ACTION_NONE, 0.5, "no_dino_state")

        if state.phase == "START":
            return Decision(ACTION_START, 1.0, "not_started:press_enter")
        if state.phase == "COUNTDOWN":
            return Decision(ACTION_WAIT, 1.0, f"countdown:{state.countdown}")
        if state.phase == "GAME_OVER":
            return Decision(ACTION_RESTART, 1.0, "game_over:press_enter")

        dino = state.dino
        obstacle = state.obstacle
        if dino is None or obstacle is None:
            return Decision(ACTION_NONE, 0.5, "insufficient_state_data")

        if dino.is_jumping:
            return Decision(ACTION_WAIT, 0.9, f"airborne:y={dino.y},v={dino.velocity:.1f}")

        if obstacle.distance > self.jump_distance_max or obstacle.is_none:
            return Decision(ACTION_WAIT, 0.8, f"obstacle_far:dist={obstacle.distance}")

        now = self.cooldown.now()
        if self.cooldown.active(now):
            return Decision(ACTION_WAIT, 0.7, "jump_cooldown_active")

        # Flying obstacles pass overhead while grounded; only a very close one is jumped.
        if obstacle.type == "BAT" and obstacle.y > 0 and obstacle.distance > self.bat_safe_distance:
            return Decision(ACTION_WAIT, 0.9, f"flying_obstacle_stay_grounded:dist={obstacle.distance}")

        if obstacle.y == 0 and self.jump_distance_min <= obstacle.distance <= self.jump_distance_max:
            self.cooldown.mark(now)
            return Decision(
                ACTION_JUMP,
                0.95,
                f"ground_obstacle_in_band:dist={obstacle.distance},type={obstacle.type}",
            )

        if obstacle.should_jump and dino.y == 0:
            self.cooldown.mark(now)
            return Decision(ACTION_JUMP, 1.0, "jump_now_signal")

        if obstacle.distance < self.jump_distance_min and obstacle.y == 0:
            self.cooldown.mark(now)
            return Decision(ACTION_JUMP, 0.6, f"emergency_jump:dist={obstacle.distance}")

        return Decision(ACTION_WAIT, 0.7, f"monitoring:dist={obstacle.distance},type={obstacle.type}")

    def reset(self) -> None:
        self.cooldown.reset()

    def tune(
        self,
        *,
        jump_distance_min: int | None = None,
        jump_distance_max: int | None = None,
        bat_safe_distance: int | None = None,
        jump_cooldown_ms: int | None = None,
    ) -> None:
        if jump_distance_min is not None:
            self.jump_distance_min = int(jump_distance_min)
        if jump_distance_max is not None:
            self.jump_distance_max = int(jump_distance_max)
        if bat_safe_distance is not None:
            self.bat_safe_distance = int(bat_safe_distance)
        if jump_cooldown_ms is not None:
            self.cooldown.cooldown_seconds = max(0, int(jump_cooldown_ms)) / 1000.0


class SnakeEngine:
    """Greedy food chaser for the snake game.

    ``food_dx``/``food_dy`` are food minus head in screen coordinates, so a
    negative ``food_dy`` means the food is above. The snake never reverses.
    """

    def __init__(self, *, turn_cooldown_ms: int = 60, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown = Cooldown(turn_cooldown_ms, clock=clock)

    def decide(self, snapshot: StateSnapshot) -> Decision:
        state = snapshot.snake
        if state is None:
            return Decision(ACTION_NONE, 0.5, "no_snake_state")
        if state.game_over:
            return Decision(ACTION_RESTART, 1.0, "game_over:press_enter")

        now = self.cooldown.now()
        if self.cooldown.active(now):
            return Decision(ACTION_WAIT, 0.6, "turn_cooldown_active")

        direction = state.direction if state.direction in _DIRECTION_ACTIONS else "RIGHT"
        horizontal = direction in {"LEFT", "RIGHT"}
        along, across = (state.food_dx, state.food_dy) if horizontal else (state.food_dy, state.food_dx)
        forward = 1 if direction in {"RIGHT", "DOWN"} else -1

        if state.danger:
            turn = self._perpendicular(horizontal, across)
            self.cooldown.mark(now)
            return Decision(_DIRECTION_ACTIONS[turn], 0.7, f"danger_evasive_turn:{turn.lower()}")

        if along == 0 and across == 0:
            return Decision(ACTION_WAIT, 0.9, "on_food")
        if along * forward > 0:
            return Decision(ACTION_WAIT, 0.8, f"food_ahead:{direction.lower()}")
        if across != 0:
            turn = self._perpendicular(horizontal, across)
            self.cooldown.mark(now)
            return Decision(_DIRECTION_ACTIONS[turn], 0.85, f"turn_toward_food:{turn.lower()}")

        # Food straight behind: start a U-turn.
        turn = self._perpendicular(horizontal, 0)
        self.cooldown.mark(now)
        return Decision(_DIRECTION_ACTIONS[turn], 0.5, f"food_behind_turning:{turn.lower()}")

    @staticmethod
    def _perpendicular(horizontal: bool, across: int) -> str:
        if horizontal:
            return "DOWN" if across > 0 else "UP"
        return "RIGHT" if across > 0 else "LEFT"

    def reset(self) -> None:
        self.cooldown.reset()

    def tune(self, *, turn_cooldown_ms: int | None = None) -> None:
        if turn_cooldown_ms is not None:
            self.cooldown.cooldown_seconds = max(0, int(turn_cooldown_ms)) / 1000.0


def choose_tictactoe_cell(board: tuple[str, ...] | list[str], mark: str = "X") -> tuple[int, str]:
    cells = list(board)
    empty = [idx for idx, cell in enumerate(cells) if not cell]
    if not empty:
        return (-1, "board_full")
    opponent = "O" if mark == "X" else "X"

    for player, label in ((mark, "win"), (opponent, "block")):
        for line in WIN_LINES:
            values = [cells[idx] for idx in line]
            if values.count(player) == 2 and values.count("") == 1:
                return (line[values.index("")], label)

    if 4 in empty:
        return (4, "center")
    for idx in (0, 2, 6, 8):
        if idx in empty:
            return (idx, "corner")
    return (empty[0], "side")


class TicTacToeEngine:
    """Places X by walking the cursor one cell per cycle, then confirming."""

    def __init__(self, *, move_cooldown_ms: int = 150, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown = Cooldown(move_cooldown_ms, clock=clock)

    def decide(self, snapshot: StateSnapshot) -> Decision:
        state = snapshot.tictactoe
        if state is None:
            return Decision(ACTION_NONE, 0.5, "no_tictactoe_state")
        if state.game_over:
            return Decision(ACTION_RESTART, 1.0, f"game_over:winner={state.winner or 'unknown'}")
        if state.turn != "X":
            return Decision(ACTION_WAIT, 0.9, "opponent_turn")

        now = self.cooldown.now()
        if self.cooldown.active(now):
            return Decision(ACTION_WAIT, 0.6, "move_cooldown_active")

        target, why = choose_tictactoe_cell(state.board, "X")
        if target < 0:
            return Decision(ACTION_NONE, 0.5, why)

        cursor = state.cursor
        if cursor == target:
            self.cooldown.mark(now)
            return Decision(ACTION_CONFIRM, 0.95, f"place_mark:cell={target},{why}")

        cursor_row, cursor_col = divmod(cursor, 3)
        target_row, target_col = divmod(target, 3)
        if target_row < cursor_row:
            action = ACTION_MOVE_UP
        elif target_row > cursor_row:
            action = ACTION_MOVE_DOWN
        elif target_col < cursor_col:
            action = ACTION_MOVE_LEFT
        else:
            action = ACTION_MOVE_RIGHT
        self.cooldown.mark(now)
        return Decision(action, 0.9, f"move_cursor:{action.split('_', 1)[1]}:to={target}")

    def reset(self) -> None:
        self.cooldown.reset()

    def tune(self, *, move_cooldown_ms: int | None = None) -> None:
        if move_cooldown_ms is not None:
            self.cooldown.cooldown_seconds = max(0, int(move_cooldown_ms)) / 1000.0


class EngineSet:
    """One engine per supported game, selected by the snapshot's game tag."""

    def __init__(self, engines: dict[str, DecisionEngine]) -> None:
        self.engines = dict(engines)

    @classmethod
    def from_config(cls, cfg: EnginesConfig, *, clock: Callable[[], float] = time.monotonic) -> "EngineSet":
        return cls(
            {
                GAME_DINO: DinoEngine(
                    jump_distance_min=cfg.dino.jump_distance_min,
                    jump_distance_max=cfg.dino.jump_distance_max,
                    bat_safe_distance=cfg.dino.bat_safe_distance,
                    jump_cooldown_ms=cfg.dino.jump_cooldown_ms,
                    clock=clock,
                ),
                GAME_SNAKE: SnakeEngine(turn_cooldown_ms=cfg.snake.turn_cooldown_ms, clock=clock),
                GAME_TICTACTOE: TicTacToeEngine(move_cooldown_ms=cfg.tictactoe.move_cooldown_ms, clock=clock),
            }
        )

    def get(self, game: str) -> DecisionEngine | None:
        return self.engines.get(str(game))

    def decide(self, game: str, snapshot: StateSnapshot) -> Decision:
        engine = self.get(game)
        if engine is None:
            return Decision(ACTION_NONE, 0.0, f"no_engine_for_game:{game}")
        return engine.decide(snapshot)

    def reset(self) -> None:
        for engine in self.engines.values():
            engine.reset()
