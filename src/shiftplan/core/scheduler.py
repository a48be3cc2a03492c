from __future__ import annotations

import logging
from collections.abc import Iterable

from shiftplan.core.models import (
    DeadlineUnreachable,
    HorizonExceeded,
    Order,
    Progress,
    ScheduleEntry,
    ScheduleResult,
    SchedulerConfig,
)

logger = logging.getLogger(__name__)


class _WorkingOrder:
    """Scheduler-local counters for one order. Never aliases caller Progress."""

    def __init__(self, order: Order, progress: list[Progress], config: SchedulerConfig):
        self.order = order
        self.effective_deadline = order.effective_deadline(config)
        self.remaining: dict[str, int] = {}
        self.ready_at: dict[str, int] = {}
        by_step = {p.step: p for p in progress}
        # Iterate the order's own step mapping so tie-breaks follow step order
        for step in order.steps:
            p = by_step.get(step)
            if p is None:
                continue
            self.remaining[step] = max(0, int(p.remaining))
            self.ready_at[step] = int(p.ready_at)

    @property
    def is_complete(self) -> bool:
        return all(v == 0 for v in self.remaining.values())

    @property
    def sessions_remaining(self) -> int:
        return sum(units * self.order.steps[step] for step, units in self.remaining.items())

    def urgency(self, day: int, config: SchedulerConfig) -> float:
        days_left = max(config.min_days_left, self.effective_deadline - (day - 1))
        return self.sessions_remaining / days_left


def run_scheduler(
    orders: list[Order],
    progress: list[Progress],
    start_day: int = 1,
    blocked_sessions: Iterable[int] = (),
    *,
    config: SchedulerConfig | None = None,
) -> ScheduleResult:
    """Place every remaining unit on the session calendar, from start_day onward.

    Greedy, day-major and session-minor. For each free session the most urgent
    order (remaining sessions of work / days left to its effective deadline)
    takes its longest eligible step. A step is eligible when it has units left,
    its cooldown gate has passed and its whole duration fits in free sessions
    of the current day.

    blocked_sessions only applies to start_day.

    Returns the schedule and, when completion is impossible, the partial
    schedule plus a DeadlineUnreachable or HorizonExceeded error.
    """
    cfg = config or SchedulerConfig()
    if start_day < 1:
        raise ValueError(f"start_day inválido: {start_day!r}")

    spd = cfg.sessions_per_day
    progress_by_order: dict[str, list[Progress]] = {}
    for p in progress:
        progress_by_order.setdefault(p.order_id, []).append(p)
    working = [_WorkingOrder(o, progress_by_order.get(o.order_id, []), cfg) for o in orders]
    blocked = {int(s) for s in blocked_sessions if 1 <= int(s) <= spd}

    entries: list[ScheduleEntry] = []

    def finish(error=None) -> ScheduleResult:
        logger.debug(
            "run_scheduler: orders=%d start_day=%d entries=%d error=%s",
            len(working),
            start_day,
            len(entries),
            error.kind if error else None,
        )
        return ScheduleResult(entries=entries, error=error)

    day = start_day
    while any(not w.is_complete for w in working):
        if day > cfg.max_days:
            return finish(HorizonExceeded(max_days=cfg.max_days))

        # index 0 unused so sessions map 1:1
        occupied = [False] * (spd + 1)
        if day == start_day:
            for s in blocked:
                occupied[s] = True

        for session in range(1, spd + 1):
            if occupied[session]:
                continue
            current = cfg.global_session(day, session)

            candidates: list[tuple[_WorkingOrder, list[str]]] = []
            for w in working:
                if w.is_complete:
                    continue
                if day > w.effective_deadline:
                    return finish(
                        DeadlineUnreachable(
                            order_id=w.order.order_id,
                            order_name=w.order.name,
                            effective_deadline=w.effective_deadline,
                            deadline=w.order.deadline,
                        )
                    )

                eligible = []
                for step, units in w.remaining.items():
                    if units <= 0 or w.ready_at[step] > current:
                        continue
                    duration = w.order.steps[step]
                    if session + duration - 1 > spd:
                        continue
                    if any(occupied[session + k] for k in range(duration)):
                        continue
                    eligible.append(step)
                if eligible:
                    candidates.append((w, eligible))

            if not candidates:
                continue

            # max() keeps the first of equal keys, so ties go to input order
            best, eligible = max(candidates, key=lambda c: c[0].urgency(day, cfg))
            step = max(eligible, key=lambda s: best.order.steps[s])
            duration = best.order.steps[step]

            best.remaining[step] -= 1
            best.ready_at[step] = current + duration + cfg.cooldown
            for k in range(duration):
                occupied[session + k] = True
                entries.append(
                    ScheduleEntry(
                        day=day,
                        session=session + k,
                        order_id=best.order.order_id,
                        step=step,
                        order_name=best.order.name,
                        color=best.order.color,
                    )
                )
        day += 1

    return finish()
