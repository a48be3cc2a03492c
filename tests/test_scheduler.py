from __future__ import annotations

import pytest

from shiftplan.core.models import (
    DeadlineUnreachable,
    HorizonExceeded,
    Order,
    Progress,
    SchedulerConfig,
)
from shiftplan.core.scheduler import run_scheduler
from shiftplan.core.shift import group_unit_occupations, initial_progress, step_durations


def make_order(order_id: str, *, quantity: int, deadline: int, steps: dict[str, int]) -> Order:
    return Order(order_id=order_id, name=order_id.upper(), quantity=quantity, deadline=deadline, steps=steps)


def progress_for(*orders: Order) -> list[Progress]:
    out: list[Progress] = []
    for o in orders:
        out.extend(initial_progress(o))
    return out


def test_single_unit_two_sessions_lands_at_start_of_day_one():
    cfg = SchedulerConfig(sessions_per_day=8, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=5, steps={"X": 2})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert result.error is None
    assert [(e.day, e.session) for e in result.entries] == [(1, 1), (1, 2)]
    assert all(e.order_id == "a" and e.step == "X" for e in result.entries)


def test_deadline_inside_buffer_is_reported_without_crashing():
    # deadline 1 - buffer 1 -> effective deadline 0, already missed on day 1
    cfg = SchedulerConfig(sessions_per_day=8, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=1, steps={"X": 3})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert isinstance(result.error, DeadlineUnreachable)
    assert result.error.order_id == "a"
    assert result.error.effective_deadline == 0
    assert result.error.deadline == 1
    assert result.entries == []
    assert "A" in result.error.message


def test_cooldown_pushes_second_unit_to_next_day():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=3, deadline_buffer=1)
    o = make_order("a", quantity=2, deadline=10, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert result.error is None
    assert [(e.day, e.session) for e in result.entries] == [(1, 1), (2, 1)]
    first, second = result.entries
    gap = cfg.global_session(second.day, second.session) - cfg.global_session(first.day, first.session)
    assert gap >= 3
    assert second.day >= 2


def test_urgent_order_wins_every_contested_session():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    # "far": more work, lots of time. "near": less work, 2 effective days left.
    far = make_order("far", quantity=6, deadline=20, steps={"X": 1})
    near = make_order("near", quantity=3, deadline=3, steps={"Y": 1})

    result = run_scheduler([far, near], progress_for(far, near), start_day=1, config=cfg)

    assert result.error is None
    day1 = [e for e in result.entries if e.day == 1]
    assert [e.order_id for e in day1] == ["near", "near", "near", "far"]
    # near never waits for far
    near_slots = [cfg.global_session(e.day, e.session) for e in result.entries if e.order_id == "near"]
    far_slots = [cfg.global_session(e.day, e.session) for e in result.entries if e.order_id == "far"]
    assert max(near_slots) < min(far_slots)


def test_blocked_session_is_never_used_on_start_day():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=10, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, blocked_sessions={3}, config=cfg)

    assert result.error is None
    assert len(result.entries) == 1
    assert (result.entries[0].day, result.entries[0].session) in {(1, 1), (1, 2), (1, 4)}


def test_blocks_only_apply_to_start_day():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=8, deadline=10, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, blocked_sessions=[3], config=cfg)

    slots = [(e.day, e.session) for e in result.entries]
    assert (1, 3) not in slots
    assert slots[:3] == [(1, 1), (1, 2), (1, 4)]
    assert (2, 3) in slots
    assert len(slots) == 8


def test_unit_does_not_straddle_a_block_or_day_end():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=2, deadline=10, steps={"X": 2})

    result = run_scheduler([o], progress_for(o), start_day=1, blocked_sessions=[3], config=cfg)

    # sessions 2-3 are broken by the block and 4-5 would leave the day
    assert [(e.day, e.session) for e in result.entries] == [(1, 1), (1, 2), (2, 1), (2, 2)]


def test_out_of_range_blocks_are_ignored():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=10, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, blocked_sessions=[0, 9, -1], config=cfg)

    assert [(e.day, e.session) for e in result.entries] == [(1, 1)]


def test_longest_eligible_step_is_placed_first():
    cfg = SchedulerConfig(sessions_per_day=8, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=10, steps={"SHORT": 1, "LONG": 3})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert [e.step for e in result.entries] == ["LONG", "LONG", "LONG", "SHORT"]


def test_equal_durations_follow_step_order():
    cfg = SchedulerConfig(sessions_per_day=8, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=10, steps={"B": 2, "A": 2})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert [e.step for e in result.entries] == ["B", "B", "A", "A"]


def test_equal_urgency_goes_to_first_order():
    cfg = SchedulerConfig(sessions_per_day=8, cooldown=5, deadline_buffer=1)
    first = make_order("first", quantity=1, deadline=10, steps={"X": 1})
    second = make_order("second", quantity=1, deadline=10, steps={"X": 1})

    result = run_scheduler([first, second], progress_for(first, second), start_day=1, config=cfg)

    assert [(e.session, e.order_id) for e in result.entries] == [(1, "first"), (2, "second")]


def test_horizon_exceeded_returns_partial_schedule():
    cfg = SchedulerConfig(sessions_per_day=2, cooldown=0, deadline_buffer=1, max_days=3)
    o = make_order("a", quantity=10, deadline=100, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert isinstance(result.error, HorizonExceeded)
    assert result.error.max_days == 3
    assert len(result.entries) == 6
    assert max(e.day for e in result.entries) == 3


def test_horizon_fires_before_a_deadline_that_lies_beyond_it():
    # effective deadline (99) is past the ceiling (3): horizon is reported
    cfg = SchedulerConfig(sessions_per_day=1, cooldown=0, deadline_buffer=1, max_days=3)
    o = make_order("a", quantity=5, deadline=100, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert isinstance(result.error, HorizonExceeded)


def test_deadline_fires_before_horizon_when_it_comes_first():
    cfg = SchedulerConfig(sessions_per_day=2, cooldown=0, deadline_buffer=1, max_days=150)
    o = make_order("a", quantity=10, deadline=3, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=1, config=cfg)

    assert isinstance(result.error, DeadlineUnreachable)
    assert result.error.effective_deadline == 2
    # days 1 and 2 were filled before the violation on day 3
    assert len(result.entries) == 4
    assert {e.day for e in result.entries} == {1, 2}


def test_start_day_beyond_horizon_with_pending_work():
    cfg = SchedulerConfig(sessions_per_day=2, cooldown=0, deadline_buffer=0, max_days=5)
    o = make_order("a", quantity=1, deadline=100, steps={"X": 1})

    result = run_scheduler([o], progress_for(o), start_day=6, config=cfg)

    assert isinstance(result.error, HorizonExceeded)
    assert result.entries == []


def test_cooldown_gate_from_progress_is_respected():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=10, steps={"X": 1})
    progress = [Progress(order_id="a", step="X", remaining=1, ready_at=7)]

    result = run_scheduler([o], progress, start_day=1, config=cfg)

    # global session 7 = day 2, session 3
    assert [(e.day, e.session) for e in result.entries] == [(2, 3)]


def test_start_day_offsets_global_sessions():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    o = make_order("a", quantity=1, deadline=10, steps={"X": 1})
    # ready on day 3 session 2
    progress = [Progress(order_id="a", step="X", remaining=1, ready_at=10)]

    result = run_scheduler([o], progress, start_day=3, config=cfg)

    assert [(e.day, e.session) for e in result.entries] == [(3, 2)]


def test_completed_and_missing_progress_are_not_scheduled():
    cfg = SchedulerConfig(sessions_per_day=4, cooldown=0, deadline_buffer=1)
    done = make_order("done", quantity=2, deadline=1, steps={"X": 1})
    partial = make_order("partial", quantity=1, deadline=10, steps={"X": 1, "Y": 1})
    progress = [
        Progress(order_id="done", step="X", remaining=0),
        # no row for partial/Y: nothing left to do for that step
        Progress(order_id="partial", step="X", remaining=1),
        Progress(order_id="ghost", step="X", remaining=5),
    ]

    result = run_scheduler([done, partial], progress, start_day=1, config=cfg)

    # the complete order is past its deadline but must not trigger an error
    assert result.error is None
    assert [(e.order_id, e.step) for e in result.entries] == [("partial", "X")]


def test_no_orders_returns_empty_schedule():
    result = run_scheduler([], [], start_day=4)
    assert result.entries == []
    assert result.ok


def test_invalid_start_day_raises():
    with pytest.raises(ValueError):
        run_scheduler([], [], start_day=0)


def test_inputs_are_not_mutated_and_output_is_deterministic():
    cfg = SchedulerConfig(sessions_per_day=6, cooldown=1, deadline_buffer=1)
    a = make_order("a", quantity=3, deadline=12, steps={"X": 2, "Y": 1})
    b = make_order("b", quantity=2, deadline=6, steps={"Z": 3})
    progress = progress_for(a, b)
    snapshot = list(progress)
    steps_before = dict(a.steps)

    r1 = run_scheduler([a, b], progress, start_day=1, blocked_sessions=[2], config=cfg)
    r2 = run_scheduler([a, b], progress, start_day=1, blocked_sessions=[2], config=cfg)

    assert progress == snapshot
    assert a.steps == steps_before
    assert r1 == r2


def test_schedule_properties_hold_on_mixed_load():
    cfg = SchedulerConfig(sessions_per_day=6, cooldown=2, deadline_buffer=1)
    orders = [
        make_order("a", quantity=4, deadline=15, steps={"X": 2, "Y": 1}),
        make_order("b", quantity=3, deadline=9, steps={"Z": 3, "W": 1}),
        make_order("c", quantity=5, deadline=20, steps={"V": 1}),
    ]
    blocked = {2, 5}
    result = run_scheduler(orders, progress_for(*orders), start_day=1, blocked_sessions=blocked, config=cfg)
    assert result.error is None

    # no double booking
    slots = [(e.day, e.session) for e in result.entries]
    assert len(slots) == len(set(slots))

    # capacity and manual blocks
    assert all(1 <= e.session <= cfg.sessions_per_day for e in result.entries)
    assert not [e for e in result.entries if e.day == 1 and e.session in blocked]

    # atomicity: each block equals its step duration
    durations = step_durations(orders)
    days = sorted({e.day for e in result.entries})
    units = [u for d in days for u in group_unit_occupations(result.entries, d)]
    for u in units:
        assert u.length == durations[(u.order_id, u.step)]

    # every unit was placed exactly once
    placed: dict[tuple[str, str], int] = {}
    for u in units:
        placed[(u.order_id, u.step)] = placed.get((u.order_id, u.step), 0) + 1
    for o in orders:
        for step in o.steps:
            assert placed[(o.order_id, step)] == o.quantity

    # cooldown between consecutive units of the same step
    by_step: dict[tuple[str, str], list] = {}
    for u in units:
        by_step.setdefault((u.order_id, u.step), []).append(u)
    for seq in by_step.values():
        for prev, nxt in zip(seq, seq[1:]):
            end = cfg.global_session(prev.day, prev.end)
            start = cfg.global_session(nxt.day, nxt.start)
            assert start - end >= cfg.cooldown
