"""
Best-effort side effects (email, calendar sync) for booking commands.

Jobs are collected while a command runs and scheduled only after its commit.
With a FastAPI ``BackgroundTasks`` they run once the response is produced;
without one they run inline. Each job is isolated: a failure is logged and
never reaches the caller or the jobs queued after it.
"""
from typing import Any, Callable, List, Optional, Tuple

import structlog
from fastapi import BackgroundTasks

logger = structlog.get_logger(__name__)


def run_side_effect(name: str, fn: Callable[..., Any], *args, **kwargs) -> bool:
    try:
        fn(*args, **kwargs)
    except Exception as e:
        logger.warning("side_effect_failed", effect=name, error=str(e), exc_info=True)
        return False
    return True


class SideEffects:
    def __init__(self, background_tasks: Optional[BackgroundTasks] = None):
        self.background_tasks = background_tasks
        self.jobs: List[Tuple[str, Callable[..., Any], tuple, dict]] = []

    def add(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> None:
        self.jobs.append((name, fn, args, kwargs))

    def dispatch(self) -> int:
        """Schedule every collected job; returns how many were scheduled."""
        jobs, self.jobs = self.jobs, []
        for name, fn, args, kwargs in jobs:
            if self.background_tasks is not None:
                self.background_tasks.add_task(run_side_effect, name, fn, *args, **kwargs)
            else:
                run_side_effect(name, fn, *args, **kwargs)
        return len(jobs)

    def __len__(self) -> int:
        return len(self.jobs)
