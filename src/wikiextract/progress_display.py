"""
Rich-based live progress panel for extraction runs.

ProgressDisplay is a context manager whose instances are callable, so one
can be handed to Pipeline as its progress callback:

    with ProgressDisplay("Extracting enwiki") as progress:
        state = Pipeline(settings, handles, progress=progress).run()
"""

import time
from typing import Any, Dict, Optional

from rich import box
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from wikiextract.state import PipelineState


MIB = 1024 * 1024


class ProgressDisplay:
    """
    Live panel showing pages, redirects, degraded pages, MiB read, percent
    of the declared archive size, rate and elapsed time.
    """

    def __init__(self, title: str = "Progress", refresh_per_second: int = 4, update_interval: int = 200):
        """
        Args:
            title: Title for the progress panel
            refresh_per_second: How many times per second to refresh the display
            update_interval: Rebuild the panel every N pages (to reduce overhead)
        """
        self.title = title
        self.refresh_per_second = refresh_per_second
        self.update_interval = update_interval

        self.metrics: Dict[str, Any] = {}
        self.live: Optional[Live] = None
        self.start_time: float = 0
        self.calls = 0
        self._last_state: Optional[PipelineState] = None

    def __enter__(self):
        self.start_time = time.time()
        self.live = Live(self._make_panel(), refresh_per_second=self.refresh_per_second)
        self.live.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.live:
            # Final update
            if self._last_state is not None:
                self.metrics = self._metrics(self._last_state)
            self.live.update(self._make_panel())
            self.live.__exit__(exc_type, exc_val, exc_tb)
        return False

    def __call__(self, state: PipelineState) -> None:
        self.calls += 1
        self._last_state = state
        if self.calls % self.update_interval == 0:
            self.metrics = self._metrics(state)
            if self.live:
                self.live.update(self._make_panel())

    def _metrics(self, state: PipelineState) -> Dict[str, Any]:
        elapsed = time.time() - self.start_time
        metrics: Dict[str, Any] = {
            "Archive": state.current_archive or "-",
            "Pages": state.pages_processed,
            "Written": state.pages_written,
            "Redirects": state.redirects,
            "Degraded": state.degraded_pages,
            "Malformed": state.segmentation_failures,
            "Read MiB": state.bytes_consumed / MIB,
            "Elapsed": elapsed,
        }
        if elapsed > 0:
            metrics["Page rate"] = state.pages_processed / elapsed
        percent = state.percent
        if percent is not None:
            metrics["Done"] = f"{percent:.1%}"
            if 0 < percent < 1:
                metrics["ETA"] = elapsed * (1 - percent) / percent
        return metrics

    def _make_panel(self) -> Panel:
        grid = Table.grid(padding=(0, 2))
        grid.add_column(justify="left", no_wrap=True)   # Label
        grid.add_column(justify="right", no_wrap=True)  # Value

        for key, value in self.metrics.items():
            grid.add_row(
                Text(f"{key}:", style="bold grey50"),
                Text(self._format_value(key, value), style="bright_cyan"),
            )

        return Panel(grid, title=self.title, box=box.SIMPLE, border_style="bright_black")

    @staticmethod
    def _format_value(key: str, value: Any) -> str:
        if isinstance(value, float):
            if key in ("Elapsed", "ETA"):
                return format_duration(value)
            if "rate" in key.lower():
                return f"{value:,.1f}/s"
            return f"{value:,.1f}"
        if isinstance(value, int):
            return f"{value:,}"
        return str(value)


def format_duration(seconds: float) -> str:
    """HH:MM:SS or MM:SS"""
    if seconds >= 3600:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours:02d}:{minutes:02d}:{int(seconds % 60):02d}"
    return f"{int(seconds // 60):02d}:{int(seconds % 60):02d}"
