from __future__ import annotations

import unittest

from autoplayer.config import default_config
from autoplayer.engines import (
    DinoEngine,
    EngineSet,
    SnakeEngine,
    TicTacToeEngine,
    choose_tictactoe_cell,
    key_for_action,
)
from autoplayer.models import (
    DinoPlayer,
    DinoState,
    Obstacle,
    SnakeState,
    StateSnapshot,
    TicTacToeState,
)


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


def dino_snapshot(
    phase: str = "PLAYING",
    *,
    distance: int | None = 4,
    obstacle_type: str = "CACTUS",
    obstacle_y: int = 0,
    should_jump: bool = False,
    dino_y: int | None = 0,
    velocity: float = 0.0,
    countdown: int = 0,
    timestamp: float = 1.0,
) -> StateSnapshot:
    dino = DinoPlayer(y=dino_y, velocity=velocity) if dino_y is not None else None
    obstacle = (
        Obstacle(distance=distance, type=obstacle_type, y=obstacle_y, should_jump=should_jump)
        if distance is not None
        else None
    )
    return StateSnapshot(
        timestamp=timestamp,
        pid=4242,
        pid_valid=True,
        screen="Playing DinoRun",
        status=f"Score: 10 | State: {phase}",
        raw="",
        game="dino",
        detail=DinoState(phase=phase, countdown=countdown, dino=dino, obstacle=obstacle),
    )


def snake_snapshot(**fields: object) -> StateSnapshot:
    return StateSnapshot(
        timestamp=1.0,
        pid=31,
        pid_valid=True,
        screen="Playing Snake",
        status="Score: 3",
        raw="",
        game="snake",
        detail=SnakeState(**fields),  # type: ignore[arg-type]
    )


def tictactoe_snapshot(board: str, *, cursor: int = 4, turn: str = "X", winner: str | None = None) -> StateSnapshot:
    cells = tuple("" if ch == "." else ch for ch in board)
    return StateSnapshot(
        timestamp=1.0,
        pid=77,
        pid_valid=True,
        screen="Playing Tic-Tac-Toe",
        status="Your Turn (X)" if turn == "X" else "Liku is thinking...",
        raw="",
        game="tictactoe",
        detail=TicTacToeState(board=cells, cursor=cursor, turn=turn, game_over=winner is not None, winner=winner),
    )


class DinoEngineTests(unittest.TestCase):
    def test_start_screen_presses_enter(self) -> None:
        decision = DinoEngine().decide(dino_snapshot("START"))
        self.assertEqual(decision.action, "start")
        self.assertEqual(decision.confidence, 1.0)
        self.assertEqual(key_for_action(decision.action), "enter")

    def test_countdown_waits_and_game_over_restarts(self) -> None:
        engine = DinoEngine()
        countdown = engine.decide(dino_snapshot("COUNTDOWN", countdown=2))
        self.assertEqual(countdown.action, "wait")
        self.assertEqual(countdown.reason, "countdown:2")
        self.assertEqual(engine.decide(dino_snapshot("GAME_OVER")).action, "restart")

    def test_ground_obstacle_in_band_jumps_and_starts_cooldown(self) -> None:
        clock = FakeClock()
        engine = DinoEngine(clock=clock)
        decision = engine.decide(dino_snapshot(distance=4))
        self.assertEqual(decision.action, "jump")
        self.assertGreaterEqual(decision.confidence, 0.9)
        self.assertIn("dist=4", decision.reason)
        self.assertEqual(engine.cooldown.last_action_mono, 0.0)
        self.assertEqual(key_for_action(decision.action), "space")

    def test_far_obstacle_waits_without_touching_cooldown(self) -> None:
        engine = DinoEngine(clock=FakeClock())
        decision = engine.decide(dino_snapshot(distance=12))
        self.assertEqual(decision.action, "wait")
        self.assertLessEqual(decision.confidence, 0.8)
        self.assertIsNone(engine.cooldown.last_action_mono)

        no_obstacle = engine.decide(dino_snapshot(distance=999, obstacle_type="NONE"))
        self.assertEqual(no_obstacle.action, "wait")
        self.assertIsNone(engine.cooldown.last_action_mono)

    def test_no_second_jump_inside_cooldown(self) -> None:
        clock = FakeClock()
        engine = DinoEngine(jump_cooldown_ms=400, clock=clock)
        self.assertEqual(engine.decide(dino_snapshot(distance=5)).action, "jump")

        for _ in range(3):
            clock.advance_ms(100)
            decision = engine.decide(dino_snapshot(distance=3))
            self.assertEqual(decision.action, "wait")
            self.assertEqual(decision.reason, "jump_cooldown_active")

        clock.advance_ms(150)
        self.assertEqual(engine.decide(dino_snapshot(distance=3)).action, "jump")

    def test_airborne_player_waits(self) -> None:
        engine = DinoEngine(clock=FakeClock())
        decision = engine.decide(dino_snapshot(distance=3, dino_y=2, velocity=1.0))
        self.assertEqual(decision.action, "wait")
        self.assertTrue(decision.reason.startswith("airborne"))
        self.assertIsNone(engine.cooldown.last_action_mono)

    def test_flying_obstacle_beyond_safe_distance_stays_grounded(self) -> None:
        engine = DinoEngine(clock=FakeClock())
        decision = engine.decide(dino_snapshot(distance=6, obstacle_type="BAT", obstacle_y=1))
        self.assertEqual(decision.action, "wait")
        self.assertTrue(decision.reason.startswith("flying_obstacle_stay_grounded"))

    def test_jump_now_signal_and_emergency_jump(self) -> None:
        engine = DinoEngine(clock=FakeClock())
        signal = engine.decide(dino_snapshot(distance=5, obstacle_type="BIRD", obstacle_y=1, should_jump=True))
        self.assertEqual(signal.action, "jump")
        self.assertEqual(signal.reason, "jump_now_signal")

        engine.reset()
        emergency = engine.decide(dino_snapshot(distance=1))
        self.assertEqual(emergency.action, "jump")
        self.assertEqual(emergency.confidence, 0.6)

    def test_missing_data_yields_none(self) -> None:
        engine = DinoEngine()
        self.assertEqual(engine.decide(dino_snapshot(distance=None)).action, "none")
        self.assertEqual(engine.decide(dino_snapshot(dino_y=None)).action, "none")
        menu = StateSnapshot(timestamp=1.0, pid=9, pid_valid=True, screen="Main Menu", status="", raw="", game="menu")
        self.assertEqual(engine.decide(menu).action, "none")

    def test_same_state_same_decision_regardless_of_timestamp(self) -> None:
        engine = DinoEngine(clock=FakeClock())
        first = engine.decide(dino_snapshot(distance=4, timestamp=1.0))
        engine.reset()
        second = engine.decide(dino_snapshot(distance=4, timestamp=9999.0))
        self.assertEqual(first, second)

    def test_tune_moves_the_jump_band(self) -> None:
        engine = DinoEngine(clock=FakeClock())
        engine.tune(jump_distance_min=5, jump_distance_max=9)
        self.assertEqual(engine.decide(dino_snapshot(distance=8)).action, "jump")
        engine.reset()
        self.assertEqual(engine.decide(dino_snapshot(distance=4)).reason, "emergency_jump:dist=4")


class SnakeEngineTests(unittest.TestCase):
    def test_food_ahead_keeps_heading(self) -> None:
        decision = SnakeEngine(clock=FakeClock()).decide(snake_snapshot(direction="RIGHT", food_dx=4, food_dy=0))
        self.assertEqual(decision.action, "wait")
        self.assertEqual(decision.reason, "food_ahead:right")

    def test_turns_toward_food_on_other_axis(self) -> None:
        engine = SnakeEngine(clock=FakeClock())
        decision = engine.decide(snake_snapshot(direction="RIGHT", food_dx=0, food_dy=-3))
        self.assertEqual(decision.action, "move_up")
        self.assertEqual(key_for_action(decision.action), "up")

    def test_never_reverses_into_itself(self) -> None:
        decision = SnakeEngine(clock=FakeClock()).decide(snake_snapshot(direction="RIGHT", food_dx=-5, food_dy=0))
        self.assertNotEqual(decision.action, "move_left")
        self.assertIn(decision.action, {"move_up", "move_down"})

    def test_danger_forces_perpendicular_turn(self) -> None:
        decision = SnakeEngine(clock=FakeClock()).decide(
            snake_snapshot(direction="UP", food_dx=2, food_dy=-6, danger=True)
        )
        self.assertEqual(decision.action, "move_right")
        self.assertTrue(decision.reason.startswith("danger_evasive_turn"))

    def test_turn_cooldown_and_game_over(self) -> None:
        clock = FakeClock()
        engine = SnakeEngine(turn_cooldown_ms=60, clock=clock)
        self.assertEqual(engine.decide(snake_snapshot(direction="LEFT", food_dx=0, food_dy=3)).action, "move_down")
        clock.advance_ms(20)
        self.assertEqual(engine.decide(snake_snapshot(direction="LEFT", food_dx=0, food_dy=3)).action, "wait")
        self.assertEqual(engine.decide(snake_snapshot(game_over=True)).action, "restart")


class TicTacToeEngineTests(unittest.TestCase):
    def test_cell_choice_order(self) -> None:
        self.assertEqual(choose_tictactoe_cell(tuple("XOXXOOOXX")), (-1, "board_full"))
        board = tuple("" if ch == "." else ch for ch in "XX.OO....")
        self.assertEqual(choose_tictactoe_cell(board), (2, "win"))
        board = tuple("" if ch == "." else ch for ch in "X..OO....")
        self.assertEqual(choose_tictactoe_cell(board), (5, "block"))
        self.assertEqual(choose_tictactoe_cell(("",) * 9), (4, "center"))
        board = tuple("" if ch == "." else ch for ch in "....O....")
        self.assertEqual(choose_tictactoe_cell(board), (0, "corner"))

    def test_walks_cursor_then_confirms(self) -> None:
        clock = FakeClock()
        engine = TicTacToeEngine(move_cooldown_ms=150, clock=clock)
        snap = tictactoe_snapshot("X..OO....", cursor=2)
        first = engine.decide(snap)
        self.assertEqual(first.action, "move_down")
        self.assertEqual(first.reason, "move_cursor:down:to=5")

        clock.advance_ms(50)
        self.assertEqual(engine.decide(tictactoe_snapshot("X..OO....", cursor=5)).action, "wait")

        clock.advance_ms(200)
        confirm = engine.decide(tictactoe_snapshot("X..OO....", cursor=5))
        self.assertEqual(confirm.action, "confirm")
        self.assertEqual(key_for_action(confirm.action), "enter")

    def test_waits_for_opponent_and_restarts_after_game(self) -> None:
        engine = TicTacToeEngine(clock=FakeClock())
        self.assertEqual(engine.decide(tictactoe_snapshot(".........", turn="O")).action, "wait")
        finished = engine.decide(tictactoe_snapshot("XXXOO....", turn="O", winner="X"))
        self.assertEqual(finished.action, "restart")
        self.assertEqual(finished.reason, "game_over:winner=X")


class EngineSetTests(unittest.TestCase):
    def test_dispatches_by_game_and_ignores_unknown(self) -> None:
        engines = EngineSet.from_config(default_config("/tmp").engines, clock=FakeClock())
        self.assertEqual(engines.decide("dino", dino_snapshot("START")).action, "start")
        unknown = engines.decide("menu", dino_snapshot("START"))
        self.assertEqual(unknown.action, "none")
        self.assertEqual(unknown.reason, "no_engine_for_game:menu")
        self.assertIsNone(key_for_action(unknown.action))

    def test_config_values_reach_engines(self) -> None:
        engines = EngineSet.from_config(default_config("/tmp").engines, clock=FakeClock())
        dino = engines.get("dino")
        assert isinstance(dino, DinoEngine)
        self.assertEqual((dino.jump_distance_min, dino.jump_distance_max), (2, 7))
        self.assertAlmostEqual(dino.cooldown.cooldown_seconds, 0.4)


if __name__ == "__main__":
    unittest.main()
