# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from datetime import timedelta
from typing import Optional

# Third-Party Imports
from rich.progress import (
    BarColumn, Progress, ProgressColumn, SpinnerColumn, Task, TaskID,
    TextColumn
)
from rich.text import Text

# Local Imports
from mbio_report import constants

# ============================== CUSTOM PROGRESS COLUMNS ============================= #

class MofNCompleteColumn(ProgressColumn):
    """Renders completed count/total (e.g., '3/10') with bold styling"""

    def render(self, task: Task) -> Text:
        """Render the progress count as 'completed/total'"""
        return Text(
            f"{int(task.completed)}/{int(task.total or 0)}".rjust(10),
            style=constants.DEFAULT_M_OF_N_COMPLETE_STYLE,
            justify="right"
        )


class TimeElapsedColumn(ProgressColumn):
    """Renders time elapsed."""

    def render(self, task: "Task") -> Text:
        """Show time elapsed."""
        elapsed = task.finished_time if task.finished else task.elapsed
        if elapsed is None:
            return Text("-:--:--", style=constants.DEFAULT_TIME_ELAPSED_STYLE)
        delta = timedelta(seconds=max(0, int(elapsed)))
        return Text(str(delta), style=constants.DEFAULT_TIME_ELAPSED_STYLE)


class TimeRemainingColumn(ProgressColumn):
    """Renders estimated time remaining."""
    max_refresh = 0.5

    def render(self, task: "Task") -> Text:
        """Show time remaining."""
        style = constants.DEFAULT_TIME_REMAINING_STYLE
        if task.total is None:
            return Text("", style=style)
        if task.time_remaining is None:
            return Text("-:--:--", style=style)
        return Text(str(timedelta(seconds=int(task.time_remaining))), style=style)


# ===================================== FUNCTIONS ==================================== #

def get_progress_bar(transient: bool = False) -> Progress:
    """Return a customized progress bar with consistent styling"""
    return Progress(
        SpinnerColumn(
            "dots",
            style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            speed=0.75
        ),
        TextColumn(
            "{task.description}".ljust(constants.DEFAULT_PROGRESS_TEXT_N),
            style=constants.DEFAULT_DESCRIPTION_STYLE,
            justify="left"
        ),
        MofNCompleteColumn(),
        BarColumn(
            bar_width=constants.DEFAULT_BAR_WIDTH,
            style="black", # Background color
            complete_style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            finished_style=constants.DEFAULT_FINISHED_STYLE
        ),
        TextColumn(
            "{task.percentage:>3.0f}%".rjust(5),
            style=constants.DEFAULT_PROGRESS_PERCENTAGE_STYLE,
            justify="right"
        ),
        TextColumn(
            "E".rjust(2),
            style=constants.DEFAULT_TIME_ELAPSED_STYLE,
            justify="right"
        ),
        TimeElapsedColumn(),
        TextColumn(
            "R".rjust(2),
            style=constants.DEFAULT_TIME_REMAINING_STYLE,
            justify="right"
        ),
        TimeRemainingColumn(),
        transient=transient,
        expand=False
    )


def _format_task_desc(desc: str):
    return f"[white]{str(desc):<{constants.DEFAULT_N}}"


class PermutationTracker:
    """Advances a child task of an optional progress bar, once per replicate.

    Without a progress bar every call is a no-op, so engines can report
    progress unconditionally.
    """

    def __init__(
        self,
        progress: Optional[Progress],
        description: str,
        total: int
    ):
        self.progress = progress
        self.task_id: Optional[TaskID] = None
        if progress is not None:
            self.task_id = progress.add_task(_format_task_desc(description), total=total)

    def advance(self, n: int = 1) -> None:
        if self.progress is not None:
            self.progress.update(self.task_id, advance=n)

    def close(self) -> None:
        if self.progress is not None:
            self.progress.stop_task(self.task_id)
            self.progress.update(self.task_id, visible=False)

    def __enter__(self) -> "PermutationTracker":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
