from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SchedulerConfig:
    sessions_per_day: int = 8
    cooldown: int = 2
    deadline_buffer: int = 1
    max_days: int = 150
    # Lower bound for days-left in the urgency ratio (avoids division by zero)
    min_days_left: float = 0.1

    def global_session(self, day: int, session: int) -> int:
        return (day - 1) * self.sessions_per_day + session


@dataclass(frozen=True)
class Order:
    order_id: str
    name: str
    quantity: int
    deadline: int
    # step name -> duration in sessions; insertion order is used for tie-breaking
    steps: dict[str, int]
    color: str | None = None

    def effective_deadline(self, config: SchedulerConfig) -> int:
        return self.deadline - config.deadline_buffer


@dataclass(frozen=True)
class Progress:
    order_id: str
    step: str
    remaining: int
    ready_at: int = 0


@dataclass(frozen=True)
class ScheduleEntry:
    day: int
    session: int
    order_id: str
    step: str
    order_name: str = ""
    color: str | None = None


@dataclass(frozen=True)
class UnitOccupation:
    """Contiguous block of sessions taken by one produced unit of a step."""

    order_id: str
    step: str
    day: int
    start: int
    end: int
    order_name: str = ""
    color: str | None = None

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class SchedulingError:
    kind: str = field(init=False, default="")

    @property
    def message(self) -> str:
        return self.kind


@dataclass(frozen=True)
class DeadlineUnreachable(SchedulingError):
    order_id: str = ""
    order_name: str = ""
    effective_deadline: int = 0
    deadline: int = 0
    kind: str = field(init=False, default="deadline_unreachable")

    @property
    def message(self) -> str:
        return f"CRÍTICO: {self.order_name} no alcanza el plazo del día {self.deadline}."


@dataclass(frozen=True)
class HorizonExceeded(SchedulingError):
    max_days: int = 0
    kind: str = field(init=False, default="horizon_exceeded")

    @property
    def message(self) -> str:
        return f"Límite de programación excedido ({self.max_days} días). Cola sobrecargada."


@dataclass(frozen=True)
class ScheduleResult:
    entries: list[ScheduleEntry]
    error: SchedulingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AdvanceResult:
    advanced: bool
    day: int
    result: ScheduleResult


@dataclass
class AuditEntry:
    id: int
    timestamp: str
    category: str
    message: str
    details: str | None = None
