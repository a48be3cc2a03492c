from __future__ import annotations

from datetime import timedelta

from nicegui import ui

from shiftplan.core.models import ScheduleResult
from shiftplan.core.shift import step_durations
from shiftplan.data.excel_io import (
    export_schedule_csv_bytes,
    export_schedule_xlsx_bytes,
    parse_int_strict,
    parse_steps,
)
from shiftplan.data.repository import Repository
from shiftplan.ui.widgets import (
    page_container,
    render_error_alert,
    render_nav,
    render_progress_bars,
    render_timeline,
)


def register_pages(repo: Repository, *, title: str = "Cola de Producción") -> None:
    def notify_result(result: ScheduleResult | None, *, ok_message: str | None = None) -> None:
        if result is not None and result.error is not None:
            ui.notify(result.error.message, color="warning")
        elif ok_message:
            ui.notify(ok_message)

    @ui.page("/")
    def dashboard() -> None:
        render_nav(active="dashboard", title=title)
        cfg = repo.get_scheduler_config()
        day = repo.get_current_day()
        start_date = repo.get_start_date()
        schedule = repo.load_last_schedule()
        blocked = set(repo.get_blocked_sessions())
        completed = repo.get_completed_unit_keys()

        def toggle_unit(key: str) -> None:
            repo.toggle_unit_completion(unit_key=key)
            ui.navigate.to("/")

        def toggle_block(session: int) -> None:
            try:
                notify_result(repo.toggle_blocked_session(session=session))
            except ValueError as ex:
                ui.notify(str(ex), color="negative")
                return
            ui.navigate.to("/")

        def next_day() -> None:
            adv = repo.advance_day()
            if not adv.advanced:
                msg = adv.result.error.message if adv.result.error else "Avance rechazado"
                with ui.dialog() as dialog, ui.card().classes("p-6"):
                    ui.label("ALERTA CRÍTICA").classes("text-lg font-bold text-red-700")
                    ui.label(msg)
                    ui.label(
                        "No puedes iniciar el siguiente turno hasta completar más unidades hoy para cumplir los plazos."
                    ).classes("text-sm text-slate-600")
                    ui.button("Cerrar", on_click=dialog.close).props("flat")
                dialog.open()
                return
            notify_result(adv.result, ok_message=f"Día {adv.day} iniciado")
            ui.navigate.to("/")

        with page_container():
            render_error_alert(schedule.error.message if schedule.error else None)

            with ui.card().classes("w-full p-6"):
                with ui.row().classes("w-full items-center justify-between gap-4"):
                    with ui.column().classes("gap-1"):
                        ui.label(f"Día {day}").classes("text-3xl font-bold")
                        ui.label(
                            f"Turno del {(start_date + timedelta(days=day - 1)).strftime('%d-%m-%Y')}. "
                            "Registra la producción de hoy antes de pasar al siguiente turno."
                        ).classes("sp-subtitle")
                    with ui.row().classes("gap-2"):
                        ui.button(
                            "CSV",
                            icon="download",
                            on_click=lambda: ui.download(
                                export_schedule_csv_bytes(repo.load_last_schedule().entries, start_date=start_date),
                                "programa.csv",
                            ),
                        ).props("flat no-caps")
                        ui.button(
                            "Excel",
                            icon="download",
                            on_click=lambda: ui.download(
                                export_schedule_xlsx_bytes(repo.load_last_schedule().entries, start_date=start_date),
                                "programa.xlsx",
                            ),
                        ).props("flat no-caps")
                        ui.button("Siguiente día", icon="event_available", on_click=next_day).props(
                            "unelevated color=dark no-caps"
                        )

            ui.label("Sesiones de hoy").classes("text-lg font-semibold")
            ui.label("Bloquea sesiones para simular detenciones de planta (solo aplica al día actual).").classes(
                "text-sm text-slate-600"
            )
            with ui.row().classes("gap-2"):
                for s in range(1, cfg.sessions_per_day + 1):
                    is_blocked = s in blocked
                    ui.button(
                        f"S{s}",
                        icon="block" if is_blocked else None,
                        on_click=lambda _e=None, ss=s: toggle_block(ss),
                    ).props("dense no-caps " + ("color=negative unelevated" if is_blocked else "outline color=primary"))

            render_timeline(
                schedule.entries,
                current_day=day,
                start_date=start_date,
                sessions_per_day=cfg.sessions_per_day,
                completed_keys=completed,
                on_toggle_unit=toggle_unit,
                durations=step_durations(repo.get_orders_model()),
            )

            with ui.row().classes("w-full gap-4 items-stretch"):
                with ui.card().classes("p-4 w-[min(640px,100%)]"):
                    ui.label("Cumplimiento").classes("text-lg font-semibold")
                    render_progress_bars(repo.get_orders_rows())
                with ui.card().classes("p-4 w-[min(480px,100%)] bg-slate-900 text-white"):
                    ui.label("Seguridad de plazos").classes("text-lg font-semibold")
                    ui.label(
                        "Si el avance actual pone en riesgo una orden, el sistema no permitirá pasar al siguiente turno."
                    ).classes("text-slate-300")

    @ui.page("/ordenes")
    def orders_page() -> None:
        render_nav(active="ordenes", title=title)
        cfg = repo.get_scheduler_config()
        with page_container():
            ui.label("Órdenes").classes("text-2xl font-semibold")
            ui.separator()

            ui.label("Nueva orden").classes("text-lg font-semibold")
            with ui.row().classes("items-end w-full gap-3"):
                name_in = ui.input("Nombre").classes("w-64")
                qty_in = ui.number("Cantidad", value=5, min=1, step=1).classes("w-32")
                deadline_in = ui.number("Plazo (día)", value=10, min=1, step=1).classes("w-32")
                steps_in = ui.input("Pasos", value="A:1; B:1", placeholder="NOMBRE:SESIONES; ...").classes("w-64")

            def add_order() -> None:
                try:
                    _, result = repo.add_order(
                        name=str(name_in.value or "").strip(),
                        quantity=parse_int_strict(qty_in.value, field="cantidad"),
                        deadline=parse_int_strict(deadline_in.value, field="plazo"),
                        steps=parse_steps(steps_in.value),
                    )
                except ValueError as ex:
                    ui.notify(f"Orden inválida: {ex}", color="negative")
                    return
                notify_result(result, ok_message="Orden agregada")
                ui.navigate.to("/ordenes")

            ui.button("Agregar", icon="add", on_click=add_order).props("unelevated color=primary")
            ui.label(f"Duración de cada paso: 1..{cfg.sessions_per_day} sesiones.").classes("text-sm text-slate-500")

            ui.separator()
            ui.label("Importar órdenes (.xlsx)").classes("text-lg font-semibold")
            ui.label("Columnas: nombre, cantidad, plazo, pasos (ej. 'A:2; B:1'), color opcional.").classes(
                "text-sm text-slate-600"
            )

            async def handle_upload(e) -> None:
                try:
                    content = await e.file.read()
                    n, result = repo.import_orders_excel_bytes(content=content)
                except ValueError as ex:
                    ui.notify(f"Error importando órdenes: {ex}", color="negative")
                    return
                notify_result(result, ok_message=f"Importadas {n} órdenes")
                ui.navigate.to("/ordenes")

            ui.upload(label="Subir órdenes (.xlsx)", on_upload=handle_upload).props("accept=.xlsx max-files=1")

            ui.separator()
            rows = repo.get_orders_rows()
            if not rows:
                ui.label("La base de órdenes está vacía.").classes("text-slate-400")
                return

            def delete(order_id: str) -> None:
                try:
                    notify_result(repo.delete_order(order_id=order_id), ok_message="Orden eliminada")
                except ValueError as ex:
                    ui.notify(str(ex), color="negative")
                ui.navigate.to("/ordenes")

            tbl = ui.table(
                columns=[
                    {"name": "name", "label": "Orden", "field": "name", "align": "left"},
                    {"name": "quantity", "label": "Cantidad", "field": "quantity"},
                    {"name": "deadline", "label": "Plazo", "field": "deadline"},
                    {"name": "effective_deadline", "label": "Plazo efectivo", "field": "effective_deadline"},
                    {"name": "steps", "label": "Pasos", "field": "steps", "align": "left"},
                    {"name": "progress_pct", "label": "Avance %", "field": "progress_pct"},
                    {"name": "actions", "label": "", "field": "order_id"},
                ],
                rows=rows,
                row_key="order_id",
            ).classes("w-full").props("dense flat bordered")
            tbl.add_slot(
                "body-cell-actions",
                r"""
<q-td :props="props">
  <q-btn flat dense round icon="delete" color="negative" @click="() => $parent.$emit('delete', props.row.order_id)" />
</q-td>
""",
            )
            tbl.on("delete", lambda e: delete(str(e.args)))

    @ui.page("/config")
    def config_page() -> None:
        render_nav(active="config", title=title)
        cfg = repo.get_scheduler_config()
        with page_container():
            ui.label("Parámetros").classes("text-2xl font-semibold")
            ui.label("Parámetros del programador de sesiones.").classes("sp-subtitle")
            ui.separator()

            with ui.row().classes("items-end w-full gap-3"):
                spd_in = ui.number("Sesiones por día", value=cfg.sessions_per_day, min=1, step=1).classes("w-40")
                cool_in = ui.number("Enfriamiento (sesiones)", value=cfg.cooldown, min=0, step=1).classes("w-48")
                buf_in = ui.number("Holgura de plazo (días)", value=cfg.deadline_buffer, min=0, step=1).classes("w-48")
                max_in = ui.number("Horizonte máximo (días)", value=cfg.max_days, min=1, step=1).classes("w-48")

            def save_cfg() -> None:
                try:
                    repo.set_config(key="sessions_per_day", value=str(int(spd_in.value or 0)))
                    repo.set_config(key="cooldown_sessions", value=str(int(cool_in.value or 0)))
                    repo.set_config(key="deadline_buffer_days", value=str(int(buf_in.value or 0)))
                    repo.set_config(key="max_days", value=str(int(max_in.value or 0)))
                except ValueError as ex:
                    ui.notify(f"Error guardando configuración: {ex}", color="negative")
                    return
                ui.notify("Configuración guardada")
                notify_result(repo.reschedule())
                ui.navigate.to("/config")

            ui.button("Guardar", on_click=save_cfg).props("unelevated color=primary")

            ui.separator()
            ui.label("Historial").classes("text-lg font-semibold")
            ui.table(
                columns=[
                    {"name": "timestamp", "label": "Fecha", "field": "timestamp", "align": "left"},
                    {"name": "category", "label": "Categoría", "field": "category", "align": "left"},
                    {"name": "message", "label": "Evento", "field": "message", "align": "left"},
                ],
                rows=[
                    {"id": a.id, "timestamp": a.timestamp, "category": a.category, "message": a.message}
                    for a in repo.get_recent_audit_entries(limit=50)
                ],
                row_key="id",
            ).classes("w-full").props("dense flat bordered")

            ui.separator()
            ui.label("Reinicio").classes("text-lg font-semibold")
            with ui.dialog() as confirm, ui.card().classes("p-6"):
                ui.label("Esto borra permanentemente todas las órdenes y el programa. ¿Continuar?")
                with ui.row():
                    ui.button("Cancelar", on_click=confirm.close).props("flat")

                    def do_reset() -> None:
                        repo.reset_all()
                        confirm.close()
                        ui.notify("Datos reiniciados")
                        ui.navigate.to("/")

                    ui.button("Borrar todo", on_click=do_reset).props("unelevated color=negative")
            ui.button("Reiniciar datos", icon="power_settings_new", on_click=confirm.open).props("outline color=negative")
