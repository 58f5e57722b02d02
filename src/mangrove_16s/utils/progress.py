# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from contextlib import contextmanager
from typing import Callable, Iterator

# Third-Party Imports
from rich.progress import (
    BarColumn, Progress, ProgressColumn, SpinnerColumn, Task, TextColumn,
    TimeElapsedColumn, TimeRemainingColumn
)
from rich.text import Text

# Local Imports
from mangrove_16s import constants

# ============================== CUSTOM PROGRESS COLUMNS ============================= #

class TestCountColumn(ProgressColumn):
    """Renders finished/total tests and, once any fail, the failure count."""
    __test__ = False

    def render(self, task: Task) -> Text:
        text = Text(
            f"{int(task.completed)}/{int(task.total or 0)}".rjust(9),
            style=constants.DEFAULT_M_OF_N_COMPLETE_STYLE,
        )
        failed = task.fields.get('failed', 0)
        if failed:
            text.append(f" ({failed} failed)", style=constants.DEFAULT_FAILED_STYLE)
        return text

# ===================================== FUNCTIONS ==================================== #

def get_progress_bar(transient: bool = False, disable: bool = False) -> Progress:
    """Progress bar in the package's colour scheme."""
    return Progress(
        SpinnerColumn("dots", style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE),
        TextColumn("{task.description}", style=constants.DEFAULT_DESCRIPTION_STYLE),
        TestCountColumn(),
        BarColumn(
            bar_width=constants.DEFAULT_BAR_WIDTH,
            style="black",
            complete_style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            finished_style=constants.DEFAULT_FINISHED_STYLE,
        ),
        TextColumn(
            "{task.percentage:>3.0f}%",
            style=constants.DEFAULT_PROGRESS_PERCENTAGE_STYLE,
        ),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        transient=transient,
        disable=disable,
    )


def _format_task_desc(desc: str) -> str:
    return f"{str(desc):<{constants.DEFAULT_N}}"


@contextmanager
def track_tests(
    total: int,
    description: str = "Statistical tests",
    disable: bool = False,
) -> Iterator[Callable[[bool], None]]:
    """
    Show a progress bar over ``total`` tests.

    Yields a callback ``advance(failed)`` to call once per finished test;
    failures are counted next to the completed total.
    """
    with get_progress_bar(disable=disable) as progress:
        task_id = progress.add_task(
            _format_task_desc(f"{description} ({total})"), total=total, failed=0
        )
        n_failed = 0

        def advance(failed: bool = False) -> None:
            nonlocal n_failed
            n_failed += int(failed)
            progress.update(task_id, advance=1, failed=n_failed)

        yield advance
