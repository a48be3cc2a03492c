from __future__ import annotations

import json
import logging
from datetime import date, datetime
from uuid import uuid4

from shiftplan.core.models import (
    AdvanceResult,
    AuditEntry,
    DeadlineUnreachable,
    HorizonExceeded,
    Order,
    Progress,
    ScheduleEntry,
    ScheduleResult,
    SchedulerConfig,
    SchedulingError,
)
from shiftplan.core.scheduler import run_scheduler
from shiftplan.core.shift import (
    apply_completions,
    group_unit_occupations,
    initial_progress,
    order_completion_pct,
    rebase_ready_at,
    step_durations,
    toggle_session,
    unit_key,
    validate_order,
)
from shiftplan.data.db import DEFAULT_CONFIG, Db
from shiftplan.data.excel_io import read_orders_excel_bytes


logger = logging.getLogger(__name__)


ORDER_COLORS = [
    "#2563eb",
    "#16a34a",
    "#dc2626",
    "#9333ea",
    "#ea580c",
    "#0891b2",
    "#ca8a04",
    "#db2777",
]


def _error_to_json(error: SchedulingError | None) -> str | None:
    if error is None:
        return None
    if isinstance(error, DeadlineUnreachable):
        payload = {
            "kind": error.kind,
            "order_id": error.order_id,
            "order_name": error.order_name,
            "effective_deadline": error.effective_deadline,
            "deadline": error.deadline,
        }
    elif isinstance(error, HorizonExceeded):
        payload = {"kind": error.kind, "max_days": error.max_days}
    else:
        payload = {"kind": error.kind}
    return json.dumps(payload)


def _error_from_json(raw: str | None) -> SchedulingError | None:
    if not raw:
        return None
    data = json.loads(raw)
    kind = data.get("kind")
    if kind == "deadline_unreachable":
        return DeadlineUnreachable(
            order_id=str(data.get("order_id") or ""),
            order_name=str(data.get("order_name") or ""),
            effective_deadline=int(data.get("effective_deadline") or 0),
            deadline=int(data.get("deadline") or 0),
        )
    if kind == "horizon_exceeded":
        return HorizonExceeded(max_days=int(data.get("max_days") or 0))
    raise ValueError(f"error de programa desconocido: {kind!r}")


class Repository:
    """Host side of the scheduler.

    Persists orders, progress and shift state in sqlite, re-runs the scheduler
    after every change and keeps the last schedule for the UI.
    """

    def __init__(self, db: Db):
        self.db = db

    # ---------- Audit ----------
    def log_audit(self, category: str, message: str, details: str | None = None) -> None:
        """Record a business event in the audit log."""
        try:
            with self.db.connect() as con:
                con.execute(
                    "INSERT INTO audit_log (category, message, details) VALUES (?, ?, ?)",
                    (category, message, details),
                )
        except Exception:
            logger.exception("Failed to write audit log")

    def get_recent_audit_entries(self, limit: int = 100) -> list[AuditEntry]:
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (int(limit),)).fetchall()
        return [
            AuditEntry(
                id=row["id"],
                timestamp=row["timestamp"],
                category=row["category"],
                message=row["message"],
                details=row["details"],
            )
            for row in rows
        ]

    # ---------- Config ----------
    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        with self.db.connect() as con:
            row = con.execute("SELECT config_value FROM app_config WHERE config_key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row["config_value"])

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key or "").strip()
        if not key:
            raise ValueError("config key vacío")
        value = str(value).strip()
        if key in DEFAULT_CONFIG:
            try:
                n = int(value)
            except ValueError:
                raise ValueError(f"{key} debe ser entero: {value!r}") from None
            minimum = 0 if key in {"cooldown_sessions", "deadline_buffer_days"} else 1
            if n < minimum:
                raise ValueError(f"{key} debe ser >= {minimum}: {n}")
            value = str(n)
        with self.db.connect() as con:
            if key == "sessions_per_day":
                self._resize_day(con, new_sessions_per_day=int(value))
            con.execute(
                """
                INSERT INTO app_config(config_key, config_value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(config_key) DO UPDATE SET config_value = excluded.config_value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
        self.log_audit("config", f"{key} = {value}")

    @staticmethod
    def _resize_day(con, *, new_sessions_per_day: int) -> None:
        """Check stored steps still fit and move cooldown gates to the new day length."""
        longest = int(con.execute("SELECT COALESCE(MAX(duration), 0) FROM order_steps").fetchone()[0])
        if new_sessions_per_day < longest:
            raise ValueError(
                f"sessions_per_day debe ser >= {longest} (paso más largo registrado): {new_sessions_per_day}"
            )
        row = con.execute("SELECT config_value FROM app_config WHERE config_key = 'sessions_per_day'").fetchone()
        old = int(row["config_value"]) if row else int(DEFAULT_CONFIG["sessions_per_day"])
        if old == new_sessions_per_day:
            return
        gates = con.execute("SELECT order_id, step, ready_at FROM progress WHERE ready_at > 0").fetchall()
        con.executemany(
            "UPDATE progress SET ready_at = ? WHERE order_id = ? AND step = ?",
            [
                (
                    rebase_ready_at(
                        int(r["ready_at"]),
                        old_sessions_per_day=old,
                        new_sessions_per_day=new_sessions_per_day,
                    ),
                    r["order_id"],
                    r["step"],
                )
                for r in gates
            ],
        )
        if gates:
            logger.info("Rebased %s cooldown gates from %s to %s sessions per day", len(gates), old, new_sessions_per_day)

    def get_scheduler_config(self) -> SchedulerConfig:
        def _int(key: str) -> int:
            return int(self.get_config(key=key, default=DEFAULT_CONFIG[key]) or DEFAULT_CONFIG[key])

        return SchedulerConfig(
            sessions_per_day=_int("sessions_per_day"),
            cooldown=_int("cooldown_sessions"),
            deadline_buffer=_int("deadline_buffer_days"),
            max_days=_int("max_days"),
        )

    # ---------- Shift state ----------
    def get_current_day(self) -> int:
        with self.db.connect() as con:
            row = con.execute("SELECT current_day FROM shift_state WHERE id = 1").fetchone()
        return int(row["current_day"]) if row else 1

    def get_start_date(self) -> date:
        with self.db.connect() as con:
            row = con.execute("SELECT start_date FROM shift_state WHERE id = 1").fetchone()
        if row is None:
            return date.today()
        return date.fromisoformat(str(row["start_date"]))

    def get_blocked_sessions(self) -> tuple[int, ...]:
        with self.db.connect() as con:
            rows = con.execute("SELECT session FROM blocked_session ORDER BY session").fetchall()
        return tuple(int(r["session"]) for r in rows)

    def get_completed_unit_keys(self) -> set[str]:
        with self.db.connect() as con:
            rows = con.execute("SELECT unit_key FROM completed_unit").fetchall()
        return {str(r["unit_key"]) for r in rows}

    # ---------- Orders / progress ----------
    def get_orders_model(self) -> list[Order]:
        with self.db.connect() as con:
            orders = con.execute("SELECT * FROM orders ORDER BY seq").fetchall()
            steps = con.execute("SELECT order_id, step, duration FROM order_steps ORDER BY order_id, position").fetchall()
        steps_by_order: dict[str, dict[str, int]] = {}
        for r in steps:
            steps_by_order.setdefault(str(r["order_id"]), {})[str(r["step"])] = int(r["duration"])
        return [
            Order(
                order_id=str(r["order_id"]),
                name=str(r["name"]),
                quantity=int(r["quantity"]),
                deadline=int(r["deadline"]),
                steps=steps_by_order.get(str(r["order_id"]), {}),
                color=r["color"],
            )
            for r in orders
        ]

    def get_progress_model(self) -> list[Progress]:
        with self.db.connect() as con:
            rows = con.execute(
                """
                SELECT p.order_id, p.step, p.remaining, p.ready_at
                FROM progress p
                JOIN orders o ON o.order_id = p.order_id
                JOIN order_steps s ON s.order_id = p.order_id AND s.step = p.step
                ORDER BY o.seq, s.position
                """
            ).fetchall()
        return [
            Progress(
                order_id=str(r["order_id"]),
                step=str(r["step"]),
                remaining=int(r["remaining"]),
                ready_at=int(r["ready_at"]),
            )
            for r in rows
        ]

    def count_orders(self) -> int:
        with self.db.connect() as con:
            return int(con.execute("SELECT COUNT(*) FROM orders").fetchone()[0])

    def get_orders_rows(self) -> list[dict]:
        """Orders for display, with fulfillment percentage."""
        progress = self.get_progress_model()
        cfg = self.get_scheduler_config()
        rows: list[dict] = []
        for o in self.get_orders_model():
            rows.append(
                {
                    "order_id": o.order_id,
                    "name": o.name,
                    "quantity": o.quantity,
                    "deadline": o.deadline,
                    "effective_deadline": o.effective_deadline(cfg),
                    "steps": ", ".join(f"{s}:{d}" for s, d in o.steps.items()),
                    "color": o.color,
                    "progress_pct": order_completion_pct(o, progress),
                }
            )
        return rows

    def add_order(
        self,
        *,
        name: str,
        quantity: int,
        deadline: int,
        steps: dict[str, int],
        color: str | None = None,
    ) -> tuple[str, ScheduleResult]:
        """Intake: store order + initial progress and reschedule.

        The order is kept even when the new schedule is infeasible; the caller
        shows the error as a warning.
        """
        cfg = self.get_scheduler_config()
        order_id = uuid4().hex
        order = Order(
            order_id=order_id,
            name=str(name or "").strip(),
            quantity=quantity,
            deadline=deadline,
            steps=dict(steps or {}),
            color=color,
        )
        validate_order(order, config=cfg)

        with self.db.connect() as con:
            seq = int(con.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM orders").fetchone()[0])
            if not order.color:
                order = Order(
                    order_id=order.order_id,
                    name=order.name,
                    quantity=order.quantity,
                    deadline=order.deadline,
                    steps=order.steps,
                    color=ORDER_COLORS[(seq - 1) % len(ORDER_COLORS)],
                )
            con.execute(
                "INSERT INTO orders(order_id, name, quantity, deadline, color, seq) VALUES(?, ?, ?, ?, ?, ?)",
                (order.order_id, order.name, int(order.quantity), int(order.deadline), order.color, seq),
            )
            con.executemany(
                "INSERT INTO order_steps(order_id, step, duration, position) VALUES(?, ?, ?, ?)",
                [(order.order_id, step, int(d), pos) for pos, (step, d) in enumerate(order.steps.items())],
            )
            con.executemany(
                "INSERT INTO progress(order_id, step, remaining, ready_at) VALUES(?, ?, ?, ?)",
                [(p.order_id, p.step, p.remaining, p.ready_at) for p in initial_progress(order)],
            )

        logger.info("Order added: %s (%s units, deadline day %s)", order.name, order.quantity, order.deadline)
        self.log_audit("orden", f"Orden agregada: {order.name}", json.dumps({"order_id": order_id}))
        return order_id, self.reschedule()

    def delete_order(self, *, order_id: str) -> ScheduleResult:
        with self.db.connect() as con:
            row = con.execute("SELECT name FROM orders WHERE order_id = ?", (order_id,)).fetchone()
            if row is None:
                raise ValueError(f"orden no existe: {order_id!r}")
            con.execute("DELETE FROM orders WHERE order_id = ?", (order_id,))
            # Drop operator marks that pointed at this order's units
            con.execute("DELETE FROM completed_unit WHERE unit_key LIKE ?", (f"{order_id}-%",))

        logger.info("Order removed: %s", row["name"])
        self.log_audit("orden", f"Orden eliminada: {row['name']}", json.dumps({"order_id": order_id}))
        return self.reschedule()

    def import_orders_excel_bytes(self, *, content: bytes) -> tuple[int, ScheduleResult | None]:
        """Add every order of an intake sheet. Validates the whole sheet first."""
        parsed = read_orders_excel_bytes(content)
        cfg = self.get_scheduler_config()
        for i, o in enumerate(parsed):
            try:
                validate_order(Order(order_id=f"import-{i}", **o), config=cfg)
            except ValueError as ex:
                raise ValueError(f"{o.get('name')}: {ex}") from ex

        result: ScheduleResult | None = None
        for o in parsed:
            _, result = self.add_order(**o)
        return len(parsed), result

    # ---------- Schedule ----------
    def save_last_schedule(self, *, start_day: int, result: ScheduleResult) -> None:
        payload = json.dumps(
            [
                {
                    "day": e.day,
                    "session": e.session,
                    "order_id": e.order_id,
                    "step": e.step,
                    "order_name": e.order_name,
                    "color": e.color,
                }
                for e in result.entries
            ]
        )
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO last_schedule(id, generated_on, start_day, entries_json, error_json)
                VALUES(1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    generated_on = excluded.generated_on,
                    start_day = excluded.start_day,
                    entries_json = excluded.entries_json,
                    error_json = excluded.error_json
                """,
                (datetime.now().isoformat(timespec="seconds"), int(start_day), payload, _error_to_json(result.error)),
            )

    def load_last_schedule(self) -> ScheduleResult:
        with self.db.connect() as con:
            row = con.execute("SELECT entries_json, error_json FROM last_schedule WHERE id = 1").fetchone()
        if row is None:
            return ScheduleResult(entries=[])
        entries = [
            ScheduleEntry(
                day=int(e["day"]),
                session=int(e["session"]),
                order_id=str(e["order_id"]),
                step=str(e["step"]),
                order_name=str(e.get("order_name") or ""),
                color=e.get("color"),
            )
            for e in json.loads(row["entries_json"] or "[]")
        ]
        return ScheduleResult(entries=entries, error=_error_from_json(row["error_json"]))

    def reschedule(self) -> ScheduleResult:
        """Run the scheduler for the current day and block set; store the result."""
        day = self.get_current_day()
        result = run_scheduler(
            self.get_orders_model(),
            self.get_progress_model(),
            start_day=day,
            blocked_sessions=self.get_blocked_sessions(),
            config=self.get_scheduler_config(),
        )
        self.save_last_schedule(start_day=day, result=result)
        if result.error is not None:
            logger.warning("Schedule for day %s is infeasible: %s", day, result.error.message)
        return result

    # ---------- Manual overrides ----------
    def toggle_blocked_session(self, *, session: int) -> ScheduleResult:
        cfg = self.get_scheduler_config()
        before = set(self.get_blocked_sessions())
        after = toggle_session(before, session, sessions_per_day=cfg.sessions_per_day)
        with self.db.connect() as con:
            con.execute("DELETE FROM blocked_session")
            con.executemany("INSERT INTO blocked_session(session) VALUES(?)", [(s,) for s in after])
        action = "bloqueada" if int(session) in after else "liberada"
        self.log_audit("bloqueo", f"Sesión {int(session)} {action} (día {self.get_current_day()})")
        return self.reschedule()

    def toggle_unit_completion(self, *, unit_key: str) -> bool:
        """Flip the operator mark of a placed unit. Returns the new state."""
        key = str(unit_key or "").strip()
        if not key:
            raise ValueError("unit_key vacío")
        with self.db.connect() as con:
            exists = con.execute("SELECT 1 FROM completed_unit WHERE unit_key = ?", (key,)).fetchone()
            if exists:
                con.execute("DELETE FROM completed_unit WHERE unit_key = ?", (key,))
            else:
                con.execute("INSERT INTO completed_unit(unit_key) VALUES(?)", (key,))
        self.log_audit("turno", f"Unidad {'desmarcada' if exists else 'completada'}", key)
        return not exists

    # ---------- Shift advance ----------
    def advance_day(self) -> AdvanceResult:
        """Close the current day and move to the next one.

        Marked units are folded into progress and the scheduler is run for the
        next day. A DeadlineUnreachable result refuses the advance and nothing
        is persisted.
        """
        cfg = self.get_scheduler_config()
        day = self.get_current_day()
        orders = self.get_orders_model()
        progress = self.get_progress_model()
        today = self.load_last_schedule().entries

        units = group_unit_occupations(today, day, step_durations(orders))
        completed = self.get_completed_unit_keys()
        updated = apply_completions(progress, units, completed, config=cfg)

        next_day = day + 1
        result = run_scheduler(orders, updated, start_day=next_day, blocked_sessions=(), config=cfg)

        if isinstance(result.error, DeadlineUnreachable):
            logger.warning("Advance to day %s refused: %s", next_day, result.error.message)
            self.log_audit("turno", f"Avance al día {next_day} rechazado", result.error.message)
            return AdvanceResult(advanced=False, day=day, result=result)

        with self.db.connect() as con:
            con.executemany(
                "UPDATE progress SET remaining = ?, ready_at = ? WHERE order_id = ? AND step = ?",
                [(p.remaining, p.ready_at, p.order_id, p.step) for p in updated],
            )
            con.execute("UPDATE shift_state SET current_day = ? WHERE id = 1", (next_day,))
            con.execute("DELETE FROM completed_unit")
            con.execute("DELETE FROM blocked_session")

        self.save_last_schedule(start_day=next_day, result=result)
        done = sum(1 for u in units if unit_key(u) in completed)
        logger.info("Advanced to day %s (%s units completed on day %s)", next_day, done, day)
        self.log_audit("turno", f"Avance al día {next_day}", json.dumps({"completed_units": done}))
        return AdvanceResult(advanced=True, day=next_day, result=result)

    # ---------- Reset ----------
    def reset_all(self) -> None:
        with self.db.connect() as con:
            con.execute("DELETE FROM orders")
            con.execute("DELETE FROM completed_unit")
            con.execute("DELETE FROM blocked_session")
            con.execute("DELETE FROM last_schedule")
            con.execute(
                "UPDATE shift_state SET current_day = 1, start_date = ? WHERE id = 1",
                (date.today().isoformat(),),
            )
        logger.info("All production data wiped")
        self.log_audit("sistema", "Datos reiniciados")
