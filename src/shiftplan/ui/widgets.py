from __future__ import annotations

from collections.abc import Callable
from contextlib import contextmanager
from datetime import date, timedelta

from nicegui import ui

from shiftplan.core.models import ScheduleEntry
from shiftplan.core.shift import group_unit_occupations, unit_key


_THEME_APPLIED = False

ROW_PX = 56
DONE_COLOR = "#10b981"


def apply_theme() -> None:
    """Apply a lightweight global theme."""
    ui.colors(
        primary="#2563eb",  # blue-600
        secondary="#0ea5e9",  # sky-500
        positive="#16a34a",  # green-600
        negative="#dc2626",  # red-600
        warning="#f59e0b",  # amber-500
    )

    ui.add_css(
        """
        body { background: #f8fafc; }
        .sp-container { max-width: 1400px; margin: 0 auto; padding: 16px; }
        .sp-subtitle { color: #475569; }
        .sp-header { border-bottom: 1px solid rgba(15, 23, 42, 0.08); }
        .sp-timeline { overflow-x: auto; }
        .sp-day { flex: none; width: 180px; border-right: 1px solid #f1f5f9; position: relative; }
        .sp-day-current { background: rgba(37, 99, 235, 0.05); }
        .sp-unit { position: absolute; left: 6px; right: 6px; border-radius: 12px; color: white;
                   display: flex; flex-direction: column; align-items: center; justify-content: center;
                   font-weight: 700; overflow: hidden; }
        .sp-unit-clickable { cursor: pointer; }
        .sp-unit-past { opacity: 0.7; }
        """
    )


def ensure_theme() -> None:
    """Apply theme once, but only when called from within a page context."""
    global _THEME_APPLIED
    if _THEME_APPLIED:
        return
    apply_theme()
    _THEME_APPLIED = True


@contextmanager
def page_container():
    with ui.element("div").classes("sp-container"):
        yield


def render_nav(active: str | None = None, *, title: str = "Cola de Producción") -> None:
    ensure_theme()
    active_key = active or "dashboard"
    sections: list[tuple[str, str, str]] = [
        ("dashboard", "Turno", "/"),
        ("ordenes", "Órdenes", "/ordenes"),
        ("config", "Config", "/config"),
    ]

    with ui.header().classes("sp-header bg-white text-slate-900"):
        with ui.row().classes("w-full items-center justify-between gap-4 px-4 py-2"):
            with ui.row().classes("items-center gap-3"):
                ui.icon("factory", size="28px").classes("text-primary")
                ui.label(title).classes("text-xl md:text-2xl font-semibold leading-none")
            with ui.row().classes("items-center gap-1"):
                for key, label, path in sections:
                    props = "dense no-caps color=primary" + (" unelevated" if key == active_key else " flat")
                    ui.button(label, on_click=lambda p=path: ui.navigate.to(p)).props(props)


def render_error_alert(message: str | None) -> None:
    if not message:
        return
    with ui.card().classes("w-full bg-red-50 border-l-4 border-red-500"):
        with ui.row().classes("items-start gap-3"):
            ui.icon("warning", color="negative", size="28px")
            with ui.column().classes("gap-0"):
                ui.label("Alerta de restricción").classes("text-xs font-bold uppercase text-red-900")
                ui.label(message).classes("text-sm text-red-700")


def render_timeline(
    entries: list[ScheduleEntry],
    *,
    current_day: int,
    start_date: date,
    sessions_per_day: int,
    completed_keys: set[str],
    on_toggle_unit: Callable[[str], None] | None = None,
    durations: dict[tuple[str, str], int] | None = None,
    min_days: int = 7,
) -> None:
    """Session x day grid. Units of the current day are clickable."""
    if not entries:
        with ui.card().classes("w-full items-center p-10 text-slate-400"):
            ui.icon("event_busy", size="48px")
            ui.label("Sin trabajo programado").classes("text-lg font-bold uppercase")
            ui.label("Agrega órdenes para generar la línea de tiempo.").classes("text-sm")
        return

    last_day = max(max(e.day for e in entries), current_day + min_days)
    height = sessions_per_day * ROW_PX

    with ui.card().classes("w-full p-0"):
        with ui.row().classes("sp-timeline w-full no-wrap gap-0"):
            with ui.column().classes("gap-0 flex-none w-16 border-r"):
                ui.label("Ses.").classes("h-12 w-full flex items-center justify-center text-xs font-bold text-slate-400")
                for s in range(1, sessions_per_day + 1):
                    ui.label(f"{s:02d}").classes("w-full flex items-center justify-center font-mono text-2xl text-slate-300").style(
                        f"height: {ROW_PX}px"
                    )

            for day in range(current_day, last_day + 1):
                is_current = day == current_day
                d = start_date + timedelta(days=day - 1)
                with ui.element("div").classes("sp-day" + (" sp-day-current" if is_current else "")):
                    header = "bg-slate-900 text-white" if is_current else "bg-slate-50 text-slate-500"
                    with ui.column().classes(f"h-12 w-full items-center justify-center gap-0 {header}"):
                        ui.label(f"Día {day}").classes("text-xs font-bold uppercase")
                        ui.label(d.strftime("%d-%m-%Y")).classes("text-sm")

                    with ui.element("div").classes("relative w-full").style(f"height: {height}px"):
                        for unit in group_unit_occupations(entries, day, durations):
                            key = unit_key(unit)
                            done = is_current and key in completed_keys
                            top = (unit.start - 1) * ROW_PX + 4
                            h = unit.length * ROW_PX - 8
                            cls = "sp-unit" + (" sp-unit-clickable" if is_current else " sp-unit-past")
                            el = ui.element("div").classes(cls).style(
                                f"top: {top}px; height: {h}px; background: {DONE_COLOR if done else (unit.color or '#64748b')}"
                            )
                            with el:
                                ui.label(unit.order_name).classes("text-sm uppercase leading-none")
                                ui.label(unit.step).classes("text-xs opacity-90")
                                if done:
                                    ui.icon("check_circle", size="18px")
                            if is_current and on_toggle_unit is not None:
                                el.on("click", lambda _e, k=key: on_toggle_unit(k))


def render_progress_bars(rows: list[dict]) -> None:
    if not rows:
        ui.label("Sin órdenes activas.").classes("text-slate-400 italic")
        return
    for r in rows:
        with ui.column().classes("w-full gap-1"):
            with ui.row().classes("w-full justify-between"):
                ui.label(str(r["name"])).classes("font-semibold text-slate-700 text-sm")
                ui.label(f"{int(r['progress_pct'])}%").classes("text-xs font-bold text-slate-400")
            ui.linear_progress(value=int(r["progress_pct"]) / 100, show_value=False).props(
                f"rounded size=10px color={r.get('color') or 'primary'}"
            )
