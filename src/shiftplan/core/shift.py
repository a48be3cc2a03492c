from __future__ import annotations

from collections.abc import Iterable

from shiftplan.core.models import Order, Progress, ScheduleEntry, SchedulerConfig, UnitOccupation


def validate_order(order: Order, *, config: SchedulerConfig) -> None:
    """Reject orders the scheduler could never place. Raises ValueError."""
    if not str(order.name or "").strip():
        raise ValueError("nombre de orden vacío")
    if int(order.quantity) < 1:
        raise ValueError(f"cantidad inválida: {order.quantity!r}")
    if int(order.deadline) < 1:
        raise ValueError(f"plazo inválido: {order.deadline!r}")
    if not order.steps:
        raise ValueError("la orden no tiene pasos")
    for step, duration in order.steps.items():
        if not str(step or "").strip():
            raise ValueError("nombre de paso vacío")
        if not isinstance(duration, int) or isinstance(duration, bool):
            raise ValueError(f"duración inválida para {step}: {duration!r}")
        if duration < 1 or duration > config.sessions_per_day:
            raise ValueError(
                f"duración de {step} fuera de rango (1..{config.sessions_per_day}): {duration}"
            )


def initial_progress(order: Order) -> list[Progress]:
    return [Progress(order_id=order.order_id, step=step, remaining=int(order.quantity), ready_at=0) for step in order.steps]


def group_unit_occupations(
    entries: Iterable[ScheduleEntry],
    day: int,
    durations: dict[tuple[str, str], int] | None = None,
) -> list[UnitOccupation]:
    """Merge one day's entries into atomic unit-step occupations.

    Consecutive sessions with the same (order_id, step) become one block.
    With durations given, a run is cut every `duration` sessions so back-to-back
    units of the same step (cooldown 0) stay separate. Returned in session order.
    """
    day_entries = sorted((e for e in entries if e.day == day), key=lambda e: e.session)
    units: list[UnitOccupation] = []
    for e in day_entries:
        last = units[-1] if units else None
        full = durations is not None and last is not None and last.length >= durations.get((last.order_id, last.step), 0) > 0
        if last and not full and last.order_id == e.order_id and last.step == e.step and e.session == last.end + 1:
            units[-1] = UnitOccupation(
                order_id=last.order_id,
                step=last.step,
                day=day,
                start=last.start,
                end=e.session,
                order_name=last.order_name,
                color=last.color,
            )
        else:
            units.append(
                UnitOccupation(
                    order_id=e.order_id,
                    step=e.step,
                    day=day,
                    start=e.session,
                    end=e.session,
                    order_name=e.order_name,
                    color=e.color,
                )
            )
    return units


def step_durations(orders: Iterable[Order]) -> dict[tuple[str, str], int]:
    return {(o.order_id, step): int(d) for o in orders for step, d in o.steps.items()}


def unit_key(unit: UnitOccupation) -> str:
    return f"{unit.order_id}-{unit.step}-{unit.start}"


def apply_completions(
    progress: list[Progress],
    units: Iterable[UnitOccupation],
    completed_keys: Iterable[str],
    *,
    config: SchedulerConfig,
) -> list[Progress]:
    """Fold operator-marked units back into Progress. Returns new records."""
    done = set(completed_keys)
    index = {(p.order_id, p.step): i for i, p in enumerate(progress)}
    out = list(progress)
    for unit in units:
        if unit_key(unit) not in done:
            continue
        i = index.get((unit.order_id, unit.step))
        if i is None:
            continue
        p = out[i]
        finish = config.global_session(unit.day, unit.end)
        out[i] = Progress(
            order_id=p.order_id,
            step=p.step,
            remaining=max(0, p.remaining - 1),
            ready_at=max(p.ready_at, finish + config.cooldown),
        )
    return out


def rebase_ready_at(ready_at: int, *, old_sessions_per_day: int, new_sessions_per_day: int) -> int:
    """Re-express a cooldown gate for a new day length.

    The gate keeps its (day, session). A session past the end of the shorter
    day moves to session 1 of the following day.
    """
    if ready_at <= 0 or old_sessions_per_day == new_sessions_per_day:
        return ready_at
    day, session = divmod(ready_at - 1, old_sessions_per_day)
    session += 1
    if session > new_sessions_per_day:
        return (day + 1) * new_sessions_per_day + 1
    return day * new_sessions_per_day + session


def toggle_session(blocked: Iterable[int], session: int, *, sessions_per_day: int) -> tuple[int, ...]:
    if not 1 <= int(session) <= sessions_per_day:
        raise ValueError(f"sesión fuera de rango (1..{sessions_per_day}): {session!r}")
    current = {int(s) for s in blocked}
    current ^= {int(session)}
    return tuple(sorted(current))


def order_completion_pct(order: Order, progress: Iterable[Progress]) -> int:
    total = int(order.quantity) * len(order.steps)
    if total <= 0:
        return 0
    remaining = sum(p.remaining for p in progress if p.order_id == order.order_id and p.step in order.steps)
    return round((total - remaining) * 100 / total)
