from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from cardgen.models.progress_event import ProgressEvent

"""Terminal progress display with tqdm (TTY only).

Used by ``cardgen generate``: the CLI subscribes to the job's session on the
progress channel and feeds each ProgressEvent to ``ProgressTracker.update_from``.
In non-TTY environments (CI, redirected output) no bar is created.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Single tqdm bar counting rendered cards.

    Progress events carry absolute counts, so the bar is advanced by the
    difference to the last seen count. A stale or repeated event never moves
    the bar backwards.
    """

    def __init__(self, total_cards: int, *, description: str = "Rendering cards", enabled: bool | None = None) -> None:
        self.total_cards = total_cards
        self.description = description
        self.processed = 0

        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_cards,
                desc=description,
                unit="card",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def update_from(self, event: ProgressEvent) -> None:
        delta = event.processed - self.processed
        if delta <= 0:
            return
        self.processed = event.processed
        if self.enabled and self.pbar is not None:
            self.pbar.update(delta)
            if event.current_label:
                self.pbar.set_postfix_str(event.current_label[:24])

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
