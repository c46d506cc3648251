from __future__ import annotations

import subprocess
import sys
import time
from typing import Callable, Sequence

from .config import InputConfig


NAMED_KEYS = ("up", "down", "left", "right", "enter", "escape", "space")

KEY_ALIASES = {
    "return": "enter",
    "esc": "escape",
}

KEY_CODE_MAP = {
    "enter": "key code 36",
    "space": "key code 49",
    "escape": "key code 53",
    "up": "key code 126",
    "down": "key code 125",
    "left": "key code 123",
    "right": "key code 124",
}

XDOTOOL_KEY_MAP = {
    "enter": "Return",
    "space": "space",
    "escape": "Escape",
    "up": "Up",
    "down": "Down",
    "left": "Left",
    "right": "Right",
}

SENDKEYS_KEY_MAP = {
    "enter": "{ENTER}",
    "space": " ",
    "escape": "{ESC}",
    "up": "{UP}",
    "down": "{DOWN}",
    "left": "{LEFT}",
    "right": "{RIGHT}",
}

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


def normalize_key(token: str) -> str:
    key = str(token).strip().lower()
    key = KEY_ALIASES.get(key, key)
    if key in NAMED_KEYS:
        return key
    if len(key) == 1 and key.isascii() and key.isalnum():
        return key
    raise ValueError(f"unsupported_key_token:{token}")


def key_to_osascript(token: str) -> str:
    key = normalize_key(token)
    if key in KEY_CODE_MAP:
        return KEY_CODE_MAP[key]
    return f'keystroke "{key}"'


def key_to_xdotool(token: str) -> str:
    key = normalize_key(token)
    return XDOTOOL_KEY_MAP.get(key, key)


def key_to_sendkeys(token: str) -> str:
    key = normalize_key(token)
    return SENDKEYS_KEY_MAP.get(key, key)


def _escape_osascript(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


# xdotool matches window names as POSIX extended regexes.
_ERE_SPECIAL = set("\\.[]()*+?{}|^$")


def _escape_ere(value: str) -> str:
    return "".join(f"\\{ch}" if ch in _ERE_SPECIAL else ch for ch in value)


def _escape_powershell(value: str) -> str:
    return value.replace("'", "''")


def _subprocess_error_detail(completed: subprocess.CompletedProcess[str]) -> str:
    stderr = str(completed.stderr).strip()
    stdout = str(completed.stdout).strip()
    return stderr or stdout or f"process_exit_{completed.returncode}"


class KeyInjector:
    """Best-effort delivery of one key press to the game hub window.

    Window targets are tried from most to least precise: the per-process
    title ``"<title> [<pid>]"``, the plain title, then each fallback title.
    Sends are spaced at least ``min_interval_ms`` apart; a caller arriving
    early sleeps for the remainder. ``send`` never raises.
    """

    platform_name = "generic"

    def __init__(
        self,
        cfg: InputConfig,
        *,
        target_pid: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        runner: Runner = subprocess.run,
    ) -> None:
        self.window_title = str(cfg.window_title).strip()
        self.fallback_titles = [str(title).strip() for title in cfg.fallback_titles if str(title).strip()]
        self.min_interval_seconds = max(0, int(cfg.min_interval_ms)) / 1000.0
        self.timeout_seconds = float(cfg.send_timeout_seconds)
        self.activate_delay_seconds = float(cfg.activate_delay_seconds)
        self._target_pid = target_pid
        self._clock = clock
        self._sleep = sleep
        self._runner = runner
        self._last_send_mono: float | None = None
        self.last_error = ""
        self.last_window = ""
        self.sends_attempted = 0

    @property
    def target_pid(self) -> int | None:
        return self._target_pid

    def set_target_pid(self, pid: int | None) -> None:
        self._target_pid = pid

    def window_candidates(self) -> list[str]:
        out: list[str] = []
        if self._target_pid is not None:
            out.append(f"{self.window_title} [{self._target_pid}]")
        out.append(self.window_title)
        out.extend(self.fallback_titles)
        seen: set[str] = set()
        ordered: list[str] = []
        for title in out:
            if title and title not in seen:
                seen.add(title)
                ordered.append(title)
        return ordered

    def _wait_for_slot(self) -> None:
        if self._last_send_mono is not None and self.min_interval_seconds > 0.0:
            elapsed = self._clock() - self._last_send_mono
            if elapsed < self.min_interval_seconds:
                self._sleep(self.min_interval_seconds - elapsed)
        self._last_send_mono = self._clock()

    def send(self, key: str) -> bool:
        self._wait_for_slot()
        self.sends_attempted += 1
        try:
            normalized = normalize_key(key)
        except ValueError as exc:
            self.last_error = str(exc)
            return False

        errors: list[str] = []
        for title in self.window_candidates():
            try:
                self._dispatch(normalized, title)
            except Exception as exc:  # noqa: BLE001
                errors.append(f"{title}:{exc}")
                continue
            self.last_error = ""
            self.last_window = title
            return True
        self.last_error = "; ".join(errors) or "no_window_candidates"
        self.last_window = ""
        return False

    def send_sequence(self, keys: Sequence[str], *, delay_ms: int = 50) -> int:
        sent = 0
        for key in keys:
            if self.send(key):
                sent += 1
            if delay_ms > 0:
                self._sleep(delay_ms / 1000.0)
        return sent

    def _run(self, cmd: list[str]) -> None:
        completed = self._runner(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
            check=False,
        )
        if completed.returncode != 0:
            raise RuntimeError(_subprocess_error_detail(completed))

    def _dispatch(self, key: str, window_title: str) -> None:
        raise NotImplementedError


class MacKeyInjector(KeyInjector):
    platform_name = "macos"

    def _dispatch(self, key: str, window_title: str) -> None:
        title = _escape_osascript(window_title)
        lines = [
            'tell application "System Events"',
            "  repeat with proc in (every application process whose visible is true)",
            f'    if (count of (windows of proc whose name contains "{title}")) > 0 then',
            "      set frontmost of proc to true",
        ]
        if self.activate_delay_seconds > 0.0:
            lines.append(f"      delay {self.activate_delay_seconds:.2f}")
        lines.extend(
            [
                f"      {key_to_osascript(key)}",
                '      return "sent"',
                "    end if",
                "  end repeat",
                '  error "window_not_found"',
                "end tell",
            ]
        )
        cmd = ["/usr/bin/osascript"]
        for line in lines:
            cmd.extend(["-e", line])
        self._run(cmd)


class LinuxKeyInjector(KeyInjector):
    platform_name = "linux"

    def _dispatch(self, key: str, window_title: str) -> None:
        # search exits non-zero when no window matches, which moves on to the next title.
        self._run(["xdotool", "search", "--name", _escape_ere(window_title), "windowactivate", "--sync"])
        if self.activate_delay_seconds > 0.0:
            self._sleep(self.activate_delay_seconds)
        self._run(["xdotool", "key", key_to_xdotool(key)])


class WindowsKeyInjector(KeyInjector):
    platform_name = "windows"

    def _dispatch(self, key: str, window_title: str) -> None:
        title = _escape_powershell(window_title)
        keys = _escape_powershell(key_to_sendkeys(key))
        delay_ms = int(self.activate_delay_seconds * 1000)
        script = (
            "$w = New-Object -ComObject WScript.Shell; "
            f"if (-not $w.AppActivate('{title}')) {{ exit 3 }}; "
            + (f"Start-Sleep -Milliseconds {delay_ms}; " if delay_ms > 0 else "")
            + f"$w.SendKeys('{keys}'); exit 0"
        )
        self._run(["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script])


def injector_class_for(platform: str | None = None) -> type[KeyInjector]:
    name = str(platform or sys.platform).lower()
    if name.startswith("darwin") or name == "macos":
        return MacKeyInjector
    if name.startswith("win"):
        return WindowsKeyInjector
    return LinuxKeyInjector


def create_injector(
    cfg: InputConfig,
    *,
    platform: str | None = None,
    target_pid: int | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    runner: Runner = subprocess.run,
) -> KeyInjector:
    cls = injector_class_for(platform)
    return cls(cfg, target_pid=target_pid, clock=clock, sleep=sleep, runner=runner)
