from __future__ import annotations

import time
from typing import Callable

from .config import AppConfig
from .engines import EngineSet, key_for_action
from .events import EventLog, utc_now_iso, write_json_atomic
from .key_input import KeyInjector, create_injector
from .models import Decision, RunStatistics, StateSnapshot
from .snapshot import SnapshotParser, detect_game


STATE_INIT = "INIT"
STATE_VALIDATING = "VALIDATING"
STATE_RUNNING = "RUNNING"
STATE_STOPPING = "STOPPING"
STATE_TERMINATED = "TERMINATED"

LOOP_TRANSITIONS: dict[str, set[str]] = {
    STATE_INIT: {STATE_VALIDATING, STATE_STOPPING},
    STATE_VALIDATING: {STATE_RUNNING, STATE_STOPPING},
    STATE_RUNNING: {STATE_STOPPING},
    STATE_STOPPING: {STATE_TERMINATED},
    STATE_TERMINATED: set(),
}

CYCLE_OK = "ok"
CYCLE_SKIPPED = "skipped"
CYCLE_STOP = "stop"

STOP_STATE_UNREADABLE = "state_unreadable"
STOP_STATE_INCOMPLETE = "state_incomplete"
STOP_TARGET_NOT_RUNNING = "target_not_running"
STOP_TARGET_LOST = "target_lost"
STOP_TARGET_EXITED = "target_exited"
STOP_MAX_CYCLES = "max_cycles_reached"
STOP_REQUESTED = "stop_requested"

STOP_MESSAGES = {
    STOP_STATE_UNREADABLE: "Cannot read state file - is the game hub running?",
    STOP_STATE_INCOMPLETE: "State file has no process id - the game hub may be mid-write or outdated",
    STOP_TARGET_NOT_RUNNING: "Game process not running (stale state file)",
    STOP_TARGET_LOST: "Cannot read state file - game may have exited",
    STOP_TARGET_EXITED: "Game process exited",
    STOP_MAX_CYCLES: "Max cycles reached",
    STOP_REQUESTED: "Stop requested",
}


class ControlLoop:
    """Parse, decide, inject: one cycle at a time against a live game hub.

    ``run`` always returns the run's statistics, whichever way it ends. Only a
    stop request, the cycle limit, repeated unreadable snapshots or the target
    process exiting end a run; everything else is absorbed per cycle.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        parser: SnapshotParser | None = None,
        injector: KeyInjector | None = None,
        engines: EngineSet | None = None,
        events: EventLog | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        out: Callable[[str], None] = print,
    ) -> None:
        self.cfg = cfg
        self.game = cfg.loop.game
        self.poll_interval_seconds = cfg.loop.poll_interval_ms / 1000.0
        self.max_cycles = cfg.loop.max_cycles
        self.max_invalid_reads = cfg.loop.max_invalid_reads
        self.verbose = cfg.loop.verbose
        self.dry_run = cfg.loop.dry_run
        self.status_file = cfg.resolve(cfg.runtime.status_file)

        self.parser = parser or SnapshotParser(cfg.resolve(cfg.runtime.state_file))
        self.injector = injector or create_injector(cfg.input)
        self.engines = engines or EngineSet.from_config(cfg.engines)
        self.events = events or EventLog(cfg.resolve(cfg.runtime.events_file), echo=self.verbose, out=out)
        self._clock = clock
        self._sleep = sleep
        self._out = out

        self.state = STATE_INIT
        self.stats = RunStatistics()
        self._stop_requested = False
        self._stop_reason = ""
        self._consecutive_invalid_reads = 0
        self._last_game = ""

    def _transition(self, to_state: str) -> None:
        allowed = LOOP_TRANSITIONS.get(self.state, set())
        if to_state not in allowed:
            raise RuntimeError(f"invalid_loop_transition:{self.state}->{to_state}")
        self.events.append(
            phase="loop",
            event_type="state_transition",
            payload={"from": self.state, "to": to_state, "reason": self._stop_reason},
        )
        self.state = to_state

    def _begin_stop(self, reason: str) -> None:
        if not self._stop_reason:
            self._stop_reason = reason
        if self.state != STATE_STOPPING:
            self._transition(STATE_STOPPING)

    def stop(self, reason: str = STOP_REQUESTED) -> None:
        """Request a cooperative stop; the current cycle finishes first."""
        self._stop_requested = True
        if not self._stop_reason:
            self._stop_reason = reason

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def _validate(self) -> StateSnapshot | None:
        snapshot = self.parser.parse(force_refresh=True)
        if snapshot is None:
            self._report_stop(STOP_STATE_UNREADABLE, detail={"state_file": str(self.parser.state_path)})
            return None
        if snapshot.pid is None:
            self._report_stop(STOP_STATE_INCOMPLETE, detail={"state_file": str(self.parser.state_path)})
            return None
        if not snapshot.pid_valid:
            self._report_stop(STOP_TARGET_NOT_RUNNING, detail={"pid": snapshot.pid})
            return None
        return snapshot

    def _report_stop(self, reason: str, *, detail: dict | None = None) -> None:
        payload = {"reason": reason, "message": STOP_MESSAGES.get(reason, reason)}
        payload.update(detail or {})
        self.events.append(phase="loop", event_type="stop_condition", severity="warning", payload=payload)
        self._out(f"{payload['message']} ({reason})")
        if reason not in {STOP_MAX_CYCLES, STOP_REQUESTED}:
            for key, value in (detail or {}).items():
                self._out(f"  {key}: {value}")
        self._begin_stop(reason)

    def _resolve_game(self, snapshot: StateSnapshot) -> str:
        if self.game == "auto":
            return detect_game(snapshot.screen)
        return self.game

    def _execute(self, decision: Decision, game: str) -> None:
        self.stats.record_decision(decision.action)
        key = key_for_action(decision.action)
        if key is None:
            return

        if self.dry_run:
            sent = True
        else:
            sent = self.injector.send(key)

        if sent:
            self.stats.key_sends += 1
        else:
            self.stats.injection_failures += 1
            self.events.append(
                phase="input",
                event_type="injection_failed",
                severity="warning",
                payload={"key": key, "action": decision.action, "error": self.injector.last_error},
            )

        if self.verbose:
            self.events.append(
                phase="decision",
                event_type=decision.action,
                payload={
                    "game": game,
                    "key": key,
                    "sent": sent,
                    "dry_run": self.dry_run,
                    "confidence": decision.confidence,
                    "reason": decision.reason,
                },
            )

    def run_cycle(self) -> str:
        """Run one parse/decide/inject cycle and report how it ended."""
        snapshot = self.parser.parse(force_refresh=True)
        if snapshot is None or snapshot.pid is None:
            self._consecutive_invalid_reads += 1
            self.stats.invalid_reads += 1
            if self._consecutive_invalid_reads >= self.max_invalid_reads:
                self._report_stop(
                    STOP_TARGET_LOST,
                    detail={"consecutive_invalid_reads": self._consecutive_invalid_reads},
                )
                return CYCLE_STOP
            return CYCLE_SKIPPED
        self._consecutive_invalid_reads = 0

        if not snapshot.pid_valid:
            self._report_stop(STOP_TARGET_EXITED, detail={"pid": snapshot.pid})
            return CYCLE_STOP

        if snapshot.pid != self.injector.target_pid:
            self.injector.set_target_pid(snapshot.pid)

        game = self._resolve_game(snapshot)
        if game != self._last_game:
            self.events.append(phase="loop", event_type="game_detected", payload={"game": game, "screen": snapshot.screen})
            self._last_game = game
        decision = self.engines.decide(game, snapshot)
        self._execute(decision, game)
        self.stats.record_score(snapshot.status)
        return CYCLE_OK

    def run(self) -> RunStatistics:
        self.stats = RunStatistics()
        self.engines.reset()
        self._consecutive_invalid_reads = 0
        self.events.append(
            phase="loop",
            event_type="run_started",
            payload={
                "game": self.game,
                "poll_interval_ms": self.cfg.loop.poll_interval_ms,
                "dry_run": self.dry_run,
                "max_cycles": self.max_cycles,
                "state_file": str(self.parser.state_path),
                "injector": self.injector.platform_name,
            },
        )
        try:
            if self._stop_requested:
                self._begin_stop(self._stop_reason or STOP_REQUESTED)
            else:
                self._transition(STATE_VALIDATING)
                initial = self._validate()
                if initial is not None:
                    self.injector.set_target_pid(initial.pid)
                    self._transition(STATE_RUNNING)
                    self.events.append(
                        phase="loop",
                        event_type="target_bound",
                        payload={"pid": initial.pid, "screen": initial.screen},
                    )
                    self._loop()
        finally:
            if self.state not in {STATE_STOPPING, STATE_TERMINATED}:
                self._begin_stop(self._stop_reason or "internal_error")
            self._terminate()
        return self.stats

    def _loop(self) -> None:
        while True:
            if self._stop_requested:
                self._report_stop(self._stop_reason or STOP_REQUESTED)
                return

            started = self._clock()
            outcome = self.run_cycle()
            if outcome == CYCLE_STOP:
                return
            if outcome == CYCLE_OK:
                self.stats.record_cycle((self._clock() - started) * 1000.0)
                if self.max_cycles > 0 and self.stats.cycles >= self.max_cycles:
                    self._report_stop(STOP_MAX_CYCLES, detail={"max_cycles": self.max_cycles})
                    return

            wait = max(0.0, self.poll_interval_seconds - (self._clock() - started))
            if wait > 0.0:
                self._sleep(wait)

    def _terminate(self) -> None:
        self.stats.finish(stop_reason=self._stop_reason, final_state=STATE_TERMINATED)
        self._transition(STATE_TERMINATED)
        payload = {
            "generated_at": utc_now_iso(),
            "state": self.state,
            "game": self.game,
            "dry_run": self.dry_run,
            "target_pid": self.injector.target_pid,
            "stats": self.stats.to_dict(),
        }
        self.events.append(phase="loop", event_type="run_finished", payload=payload["stats"])
        try:
            write_json_atomic(self.status_file, payload)
        except OSError as exc:
            self._out(f"Could not write status file {self.status_file}: {exc}")
        for line in self.stats.summary_lines():
            self._out(line)
