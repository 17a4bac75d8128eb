"""Terminal progress helpers with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text


@dataclass
class LoadState:
    records: int = 0
    updates: int = 0


class RateColumn(ProgressColumn):
    """Render decoded records per second."""

    def render(self, task: Task) -> Text:
        speed = task.fields.get("rate")
        if not speed:
            return Text("", style="progress.percentage")
        return Text(f"{speed:,.0f} rec/s", style="progress.percentage")


class LoadProgressReporter:
    """Spinner with a live record count while the directory loads.

    Silent when disabled or when the console is not a terminal; the counters
    are tracked either way so callers can print a summary.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self._lock = Lock()
        self.state = LoadState()
        self._label = "servers"

    def start(self, label: str = "servers") -> None:
        self.state = LoadState()
        self._label = label
        if not self.enabled:
            return
        if self._console is None:
            self._console = Console()
        if not self._console.is_terminal:
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<12}", justify="left"),
            TextColumn("[green]{task.completed:>8,.0f}", justify="right"),
            TimeElapsedColumn(),
            RateColumn(),
            refresh_per_second=10,
            transient=True,
            console=self._console,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            # Another live display owns the console
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task("load", total=None, label=label, rate=None)

    def update(self, count: int) -> None:
        with self._lock:
            self.state.records = max(0, int(count))
            self.state.updates += 1
            if self._progress is None or self._task_id is None:
                return
            task = self._progress.tasks[0] if self._progress.tasks else None
            elapsed = task.elapsed if task is not None else None
            rate = self.state.records / elapsed if elapsed else None
            self._progress.update(self._task_id, completed=self.state.records, rate=rate)

    def close(self) -> None:
        if self._progress is not None:
            self._progress.__exit__(None, None, None)
            self._progress = None
        self._task_id = None

    def summary(self) -> dict[str, int]:
        return {"records": self.state.records, "updates": self.state.updates}

    def __enter__(self) -> "LoadProgressReporter":
        self.start(self._label)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["LoadProgressReporter", "LoadState", "RateColumn"]
