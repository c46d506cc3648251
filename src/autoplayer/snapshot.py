from __future__ import annotations

import os
from pathlib import Path
import re
import subprocess
import sys
import time
from typing import Callable

from .models import (
    DINO_PHASES,
    GAME_DINO,
    GAME_MENU,
    GAME_SNAKE,
    GAME_TICTACTOE,
    GAME_UNKNOWN,
    NO_OBSTACLE_DISTANCE,
    DinoPlayer,
    DinoState,
    MenuItem,
    MenuState,
    Obstacle,
    SnakeState,
    StateSnapshot,
    TicTacToeState,
)


_PID_RE = re.compile(r"PROCESS ID:\s*(\d+)")
_SCREEN_RE = re.compile(r"CURRENT SCREEN:\s*(.+)")
_STATUS_RE = re.compile(r"STATUS:\s*(.+)")

_DINO_PHASE_RE = re.compile(r"State:\s*(" + "|".join(DINO_PHASES) + r")\b", re.IGNORECASE)
_COUNTDOWN_RE = re.compile(r"COUNTDOWN:\s*(\d+)")
_DINO_Y_RE = re.compile(r"Dino Y:\s*(-?\d+)")
_VELOCITY_RE = re.compile(r"Velocity:\s*(-?[\d.]+)")
_OBSTACLE_RE = re.compile(r"Next Obstacle:\s*Dist=(-?\d+),\s*Type=(\w+),\s*Y=(\d+)")

_SNAKE_DIRECTION_RE = re.compile(r"Direction:\s*(\w+)")
_SNAKE_DX_RE = re.compile(r"dx=(-?\d+)")
_SNAKE_DY_RE = re.compile(r"dy=(-?\d+)")

_BOARD_ROW_RE = re.compile(r"\[?([XO.])\]?\s*\|\s*\[?([XO.])\]?\s*\|\s*\[?([XO.])\]?")
_BOARD_CURSOR_RE = re.compile(r"\[([XO.])\]")
_CURSOR_RE = re.compile(r"Cursor Position:\s*(\d+)")

_MENU_ITEM_RE = re.compile(r"\[([ xX])\]\s*(.+)")


def pid_is_running(pid: int) -> bool:
    """Ask the OS whether ``pid`` exists; any probe failure reads as not running."""
    if pid <= 0:
        return False
    if sys.platform == "win32":
        try:
            completed = subprocess.run(
                ["tasklist", "/FI", f"PID eq {pid}", "/NH"],
                capture_output=True,
                text=True,
                timeout=2.0,
                check=False,
            )
        except Exception:  # noqa: BLE001
            return False
        return re.search(rf"\b{pid}\b", str(completed.stdout)) is not None
    try:
        os.kill(pid, 0)
    except PermissionError:
        # Exists but owned by another user.
        return True
    except (OSError, OverflowError):
        return False
    return True


def detect_game(screen: str) -> str:
    lowered = str(screen).lower()
    if "dinorun" in lowered or "dino run" in lowered:
        return GAME_DINO
    if "snake" in lowered:
        return GAME_SNAKE
    if "tic-tac-toe" in lowered or "tictactoe" in lowered:
        return GAME_TICTACTOE
    if "menu" in lowered:
        return GAME_MENU
    return GAME_UNKNOWN


def _extract(content: str, pattern: re.Pattern[str]) -> str:
    match = pattern.search(content)
    return match.group(1).strip() if match else ""


def _extract_int(content: str, pattern: re.Pattern[str], default: int = 0) -> int:
    match = pattern.search(content)
    if not match:
        return default
    try:
        return int(match.group(1))
    except ValueError:
        return default


def _extract_float(content: str, pattern: re.Pattern[str], default: float = 0.0) -> float:
    match = pattern.search(content)
    if not match:
        return default
    try:
        return float(match.group(1))
    except ValueError:
        return default


def parse_dino(content: str) -> DinoState:
    phase_match = _DINO_PHASE_RE.search(content)
    if phase_match:
        phase = phase_match.group(1).upper()
    elif "COUNTDOWN:" in content:
        phase = "COUNTDOWN"
    elif "Final Score:" in content or "Game Over" in content:
        phase = "GAME_OVER"
    elif "Press ENTER to start" in content:
        phase = "START"
    else:
        phase = "PLAYING"

    countdown = _extract_int(content, _COUNTDOWN_RE) if phase == "COUNTDOWN" else 0

    dino: DinoPlayer | None = None
    y_match = _DINO_Y_RE.search(content)
    if y_match:
        dino = DinoPlayer(
            y=int(y_match.group(1)),
            velocity=_extract_float(content, _VELOCITY_RE),
        )

    obstacle: Obstacle | None = None
    obstacle_match = _OBSTACLE_RE.search(content)
    if obstacle_match:
        obstacle = Obstacle(
            distance=int(obstacle_match.group(1)),
            type=obstacle_match.group(2).upper(),
            y=int(obstacle_match.group(3)),
            should_jump="[JUMP NOW!]" in content,
        )
    elif "Next Obstacle: None" in content:
        obstacle = Obstacle(distance=NO_OBSTACLE_DISTANCE, type="NONE", y=0, should_jump=False)

    return DinoState(phase=phase, countdown=countdown, dino=dino, obstacle=obstacle)


def parse_snake(content: str) -> SnakeState:
    return SnakeState(
        direction=(_extract(content, _SNAKE_DIRECTION_RE) or "RIGHT").upper(),
        food_dx=_extract_int(content, _SNAKE_DX_RE),
        food_dy=_extract_int(content, _SNAKE_DY_RE),
        danger="DANGER" in content,
        game_over="GAME OVER" in content.upper(),
    )


def parse_tictactoe(content: str) -> TicTacToeState:
    board = [""] * 9
    cursor_from_board: int | None = None
    rows = [match for match in _BOARD_ROW_RE.finditer(content)]
    if len(rows) >= 3:
        idx = 0
        for row in rows[:3]:
            for cell_no, cell in enumerate(row.groups()):
                board[idx] = "" if cell == "." else cell
                if cursor_from_board is None and _BOARD_CURSOR_RE.search(_row_cell_text(row, cell_no)):
                    cursor_from_board = idx
                idx += 1

    cursor = _extract_int(content, _CURSOR_RE, default=-1)
    if cursor < 0 or cursor > 8:
        cursor = cursor_from_board if cursor_from_board is not None else 4

    if "You Won" in content:
        winner: str | None = "X"
    elif "Liku Won" in content:
        winner = "O"
    elif "Draw" in content:
        winner = "DRAW"
    else:
        winner = None

    return TicTacToeState(
        board=tuple(board),
        cursor=cursor,
        turn="X" if "Your Turn" in content else "O",
        game_over="Game Over" in content or winner is not None,
        winner=winner,
    )


def _row_cell_text(row: re.Match[str], cell_no: int) -> str:
    start = row.start(cell_no + 1)
    end = row.end(cell_no + 1)
    text = row.string
    return text[max(0, start - 1) : min(len(text), end + 1)]


def parse_menu(content: str) -> MenuState:
    items: list[MenuItem] = []
    selected_index = -1
    for idx, match in enumerate(_MENU_ITEM_RE.finditer(content)):
        selected = match.group(1).lower() == "x"
        items.append(MenuItem(text=match.group(2).strip(), selected=selected))
        if selected and selected_index < 0:
            selected_index = idx
    return MenuState(items=tuple(items), selected_index=selected_index)


_DETAIL_PARSERS: dict[str, Callable[[str], object]] = {
    GAME_DINO: parse_dino,
    GAME_SNAKE: parse_snake,
    GAME_TICTACTOE: parse_tictactoe,
    GAME_MENU: parse_menu,
}


class SnapshotParser:
    """Reads the hub's state file and turns it into a ``StateSnapshot``.

    The file is rewritten in full by the game on every update, possibly while
    we read it, so every field is optional except the process id. Reads are
    skipped when the file's mtime has not advanced, unless forced.
    """

    def __init__(
        self,
        state_path: str | Path,
        *,
        liveness: Callable[[int], bool] = pid_is_running,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state_path = Path(state_path)
        self._liveness = liveness
        self._clock = clock
        self._last_mtime_ns = 0
        self._cached: StateSnapshot | None = None
        self.reads = 0

    @property
    def cached(self) -> StateSnapshot | None:
        return self._cached

    def has_changed(self) -> bool:
        try:
            mtime_ns = self.state_path.stat().st_mtime_ns
        except OSError:
            return False
        return mtime_ns > self._last_mtime_ns

    def parse(self, force_refresh: bool = False) -> StateSnapshot | None:
        if not force_refresh and self._cached is not None and not self.has_changed():
            return self._cached

        try:
            stat_row = self.state_path.stat()
            content = self.state_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None

        self.reads += 1
        self._last_mtime_ns = stat_row.st_mtime_ns
        self._cached = self.parse_content(content)
        return self._cached

    def parse_content(self, content: str) -> StateSnapshot:
        now = self._clock()
        pid = _extract_int(content, _PID_RE, default=0)
        if pid <= 0:
            return StateSnapshot(
                timestamp=now,
                pid=None,
                pid_valid=False,
                screen="",
                status="",
                raw=content,
            )

        screen = _extract(content, _SCREEN_RE)
        game = detect_game(screen)
        parser = _DETAIL_PARSERS.get(game)
        detail = parser(content) if parser is not None else None
        return StateSnapshot(
            timestamp=now,
            pid=pid,
            pid_valid=bool(self._liveness(pid)),
            screen=screen,
            status=_extract(content, _STATUS_RE),
            raw=content,
            game=game,
            detail=detail,  # type: ignore[arg-type]
        )
