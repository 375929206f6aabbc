from __future__ import annotations

import logging
from datetime import date, timedelta

from nicegui import ui

from knitboard.core.fabrics import keywords_from_text, keywords_to_text
from knitboard.core.reconcile import FILTER_ALL, FILTERS, filter_rows, summarize
from knitboard.data.batch import CommitError
from knitboard.data.excel_io import ImportParseError, parse_iso_date
from knitboard.data.repository import Repository
from knitboard.import_session import ImportSession
from knitboard.ui.widgets import (
    STAGED_COLUMNS,
    page_container,
    render_nav,
    render_validation_slot,
    staged_table_rows,
)

logger = logging.getLogger(__name__)


def register_pages(repo: Repository) -> None:
    def _default_day() -> date:
        return repo.get_active_day() or date.today()

    @ui.page("/")
    def dashboard() -> None:
        render_nav(active="dashboard")
        with page_container():
            ui.label("Machines").classes("text-2xl font-semibold")
            ui.label("Latest recorded state per machine.").classes("kb-subtitle")

            rows = repo.get_machine_state_rows()
            if not rows:
                ui.label("No machines yet. Add one below.").classes("text-gray-500")
            else:
                ui.table(
                    columns=[
                        {"name": "name", "label": "Machine", "field": "name", "align": "left", "sortable": True},
                        {"name": "machine_type", "label": "Type", "field": "machine_type", "sortable": True},
                        {"name": "brand", "label": "Brand", "field": "brand"},
                        {"name": "status", "label": "Status", "field": "status", "sortable": True},
                        {"name": "client", "label": "Client", "field": "client", "sortable": True},
                        {"name": "fabric", "label": "Fabric", "field": "fabric", "align": "left"},
                        {"name": "remaining", "label": "Remaining", "field": "remaining", "sortable": True},
                        {"name": "last_log_date", "label": "Last log", "field": "last_log_date", "sortable": True},
                    ],
                    rows=rows,
                    row_key="machine_id",
                    pagination=50,
                ).classes("w-full").props("dense flat bordered")

            with ui.card().classes("p-4 mt-4 w-[min(720px,100%)]"):
                ui.label("Add / edit machine").classes("text-lg font-semibold")
                with ui.row().classes("items-end gap-3"):
                    mid = ui.input("Id").classes("w-24")
                    name = ui.input("Name").classes("w-40")
                    number = ui.number("Number", value=None, min=0, step=1).classes("w-24")
                    mtype = ui.input("Type").classes("w-32")
                    brand = ui.input("Brand").classes("w-32")

                def save_machine() -> None:
                    try:
                        repo.upsert_machine(
                            machine_id=str(mid.value or ""),
                            name=str(name.value or ""),
                            number=int(number.value) if number.value is not None else None,
                            machine_type=str(mtype.value or ""),
                            brand=str(brand.value or ""),
                        )
                        ui.notify("Machine saved")
                        ui.navigate.to("/")
                    except ValueError as ex:
                        ui.notify(f"Could not save machine: {ex}", color="negative")

                ui.button("Save", on_click=save_machine).props("unelevated color=primary")

    @ui.page("/import")
    def import_page() -> None:
        render_nav(active="import")
        # Only one import session per page; uploading again replaces it.
        state: dict = {"session": None}

        with page_container():
            ui.label("Daily production import").classes("text-2xl font-semibold")
            ui.label(
                "Upload the production export. Columns: fabric, production, customer, scrap, work center."
            ).classes("kb-subtitle")

            with ui.row().classes("items-end gap-4 pt-2"):
                target_input = ui.input("Target date", value=_default_day().isoformat()).props("type=date")

            def open_mapping_dialog(session: ImportSession) -> None:
                options = {m.machine_id: session.machine_label(m.machine_id) for m in session.machines}
                aliases = {m.machine_id: m.work_center_aliases for m in session.machines}
                dialog = ui.dialog().props("persistent")
                with dialog, ui.card().classes("w-[min(900px,95vw)]"):
                    ui.label("Review work center mappings").classes("text-lg font-semibold")
                    ui.label("Changes are saved immediately and used for future imports.").classes(
                        "text-slate-600"
                    )
                    ui.separator()
                    with ui.element("div").classes("max-h-[65vh] overflow-y-auto w-full"):
                        for p in session.proposals:
                            with ui.row().classes("items-center w-full gap-3 py-1"):
                                with ui.column().classes("w-72 gap-0"):
                                    ui.label(p.label).classes("font-medium")
                                    ui.label("Fabrics: " + (", ".join(p.fabrics) or "None")).classes(
                                        "text-xs text-slate-600 leading-tight"
                                    )
                                    if p.machine_id is None:
                                        ui.badge("Unmapped", color="negative")
                                    elif p.source == "matched":
                                        ui.badge("Auto-matched", color="warning")

                                def _on_change(e, label=p.label) -> None:
                                    try:
                                        session.set_mapping(label, e.value)
                                    except ValueError as ex:
                                        ui.notify(f"Could not save mapping: {ex}", color="negative")

                                ui.select(
                                    options,
                                    value=session.mappings.get(p.label),
                                    label="Maps to",
                                    with_input=True,
                                    clearable=True,
                                    on_change=_on_change,
                                ).classes("w-80")
                                known = aliases.get(session.mappings.get(p.label) or "", ())
                                if known:
                                    ui.label("Aliases: " + ", ".join(known)).classes("text-xs text-slate-500")

                    ui.separator()
                    with ui.row().classes("justify-end w-full gap-3"):
                        ui.button("Cancel", on_click=lambda: _discard(dialog)).props("flat")

                        def _confirm() -> None:
                            try:
                                unknown = session.confirm_mappings()
                            except ValueError as ex:
                                ui.notify(f"Could not save mappings: {ex}", color="negative")
                                return
                            dialog.close()
                            if unknown:
                                open_fabric_dialog(session, unknown)
                            else:
                                open_review_dialog(session)

                        ui.button("Confirm mappings & continue", on_click=_confirm).props(
                            "unelevated color=primary"
                        )
                dialog.open()

            def open_fabric_dialog(session: ImportSession, unknown: list[str]) -> None:
                dialog = ui.dialog().props("persistent")
                checks: dict[str, ui.checkbox] = {}
                with dialog, ui.card().classes("w-[min(700px,95vw)]"):
                    ui.label("New fabrics found").classes("text-lg font-semibold")
                    ui.label("Selected fabrics are added to the fabric list before matching.").classes(
                        "text-slate-600"
                    )
                    with ui.element("div").classes("max-h-[55vh] overflow-y-auto w-full"):
                        for name in unknown:
                            checks[name] = ui.checkbox(name, value=True).props("dense")
                    with ui.row().classes("justify-end w-full gap-3"):
                        ui.button("Cancel", on_click=lambda: _discard(dialog)).props("flat")

                        def _continue() -> None:
                            approved = [n for n, c in checks.items() if c.value]
                            try:
                                created = session.create_fabrics(approved)
                            except ValueError as ex:
                                ui.notify(f"Could not create fabrics: {ex}", color="negative")
                                return
                            if created:
                                ui.notify(f"Added {created} new fabrics")
                            dialog.close()
                            open_review_dialog(session)

                        ui.button("Continue import", on_click=_continue).props("unelevated color=primary")
                dialog.open()

            def open_review_dialog(session: ImportSession) -> None:
                session.reconcile()
                view = {"filter": FILTER_ALL}
                dialog = ui.dialog().props("persistent maximized")
                with dialog, ui.card().classes("w-full"):
                    with ui.row().classes("items-center justify-between w-full"):
                        ui.label(f"Import preview for {session.target_date.isoformat()}").classes(
                            "text-lg font-semibold"
                        )
                        summary_label = ui.label().classes("text-sm text-slate-600")
                    ui.toggle(list(FILTERS), value=FILTER_ALL, on_change=lambda e: _set_filter(e.value))

                    tbl = ui.table(
                        columns=STAGED_COLUMNS,
                        rows=[],
                        row_key="machine_id",
                        selection="multiple",
                        pagination=0,
                        on_select=lambda e: _on_select(e.selection),
                    ).classes("w-full kb-review-table").props("dense flat bordered wrap-cells")
                    render_validation_slot(tbl)

                    def _refresh() -> None:
                        visible = filter_rows(session.staged, view["filter"])
                        tbl.rows = staged_table_rows(visible)
                        tbl.selected = [r for r in tbl.rows if r["selected"]]
                        tbl.update()
                        s = summarize(session.staged)
                        summary_label.text = (
                            f"{s['selected']}/{s['total']} selected · {s['ERROR']} errors · "
                            f"{s['WARNING']} warnings · {s['missing']} missing from import"
                        )

                    def _set_filter(kind: str) -> None:
                        view["filter"] = kind
                        _refresh()

                    def _on_select(selection: list[dict]) -> None:
                        chosen = {r["machine_id"] for r in selection}
                        for r in tbl.rows:
                            session.set_selected(r["machine_id"], r["machine_id"] in chosen)
                        _refresh()

                    with ui.row().classes("justify-end w-full gap-3"):
                        ui.button("Cancel", on_click=lambda: _discard(dialog)).props("flat")

                        def _apply() -> None:
                            if not session.selected_rows:
                                ui.notify("No rows selected for import.", color="warning")
                                return
                            try:
                                count = session.apply()
                            except CommitError as ex:
                                msg = "Import failed. Re-run the import to see the current state before retrying."
                                if ex.partially_applied:
                                    msg += f" {ex.machines_committed} machines were already written."
                                ui.notify(msg, color="negative", multi_line=True, timeout=0, close_button=True)
                                dialog.close()
                                state["session"] = None
                                return
                            ui.notify(f"Imported {count} machines for {session.target_date.isoformat()}")
                            dialog.close()
                            state["session"] = None

                        ui.button("Apply selected", on_click=_apply).props("unelevated color=primary")

                    _refresh()
                dialog.open()

            def _discard(dialog) -> None:
                dialog.close()
                state["session"] = None
                ui.notify("Import discarded")

            async def handle_upload(e) -> None:
                try:
                    target = parse_iso_date(target_input.value)
                    content = await e.file.read()
                    session = ImportSession.from_excel(repo, content=content, target_date=target)
                except (ImportParseError, ValueError) as ex:
                    ui.notify(f"Could not read import: {ex}", color="negative")
                    return
                if not session.rows:
                    ui.notify("The file has no rows with a work center.", color="warning")
                    return
                state["session"] = session
                # The review is always shown, even when every label matched.
                open_mapping_dialog(session)

            with ui.card().classes("p-4 w-[min(560px,100%)]"):
                ui.label("Production export").classes("text-lg font-semibold")
                ui.upload(label="Upload export (.xlsx)", on_upload=handle_upload, auto_upload=True).props(
                    "accept=.xlsx max-files=1"
                )

            with ui.card().classes("p-4 w-[min(560px,100%)] mt-4"):
                ui.label("Carry forward").classes("text-lg font-semibold")
                ui.label(
                    "Copy each machine's log from the source date to the target date with zero production."
                ).classes("text-slate-600")
                source_input = ui.input(
                    "Source date", value=(_default_day() - timedelta(days=1)).isoformat()
                ).props("type=date")

                def _carry_forward() -> None:
                    try:
                        count = repo.carry_forward(target_date=target_input.value, source_date=source_input.value)
                    except CommitError as ex:
                        ui.notify(f"Carry forward failed: {ex}", color="negative")
                        return
                    except ValueError as ex:
                        ui.notify(f"Invalid dates: {ex}", color="negative")
                        return
                    ui.notify(f"Fetched data for {count} machines from {source_input.value}")

                ui.button("Fetch from source date", on_click=_carry_forward).props("unelevated color=primary")

    @ui.page("/settings")
    def settings_page() -> None:
        render_nav(active="settings")
        with page_container():
            ui.label("Settings").classes("text-2xl font-semibold")

            with ui.card().classes("p-4 w-[min(720px,100%)]"):
                active = ui.input("Active day", value=(repo.get_active_day() or date.today()).isoformat()).props(
                    "type=date"
                )
                slack = ui.number(
                    "Overproduction slack", value=repo.get_overproduction_slack(), min=0, step=1
                ).classes("w-48")
                keywords = ui.textarea(
                    "Fabric short-name keywords (one per line)",
                    value=keywords_to_text(repo.get_fabric_strip_keywords()),
                ).classes("w-full")

                def save() -> None:
                    try:
                        repo.set_active_day(active.value)
                        repo.set_overproduction_slack(float(slack.value or 0))
                        lines = keywords_from_text(keywords.value)
                        if tuple(lines) != repo.get_fabric_strip_keywords():
                            repo.set_fabric_strip_keywords(lines)
                        ui.notify("Settings saved")
                    except ValueError as ex:
                        ui.notify(f"Invalid setting: {ex}", color="negative")

                ui.button("Save", on_click=save).props("unelevated color=primary")

            ui.label("Recent activity").classes("text-lg font-semibold pt-4")
            ui.table(
                columns=[
                    {"name": "timestamp", "label": "When", "field": "timestamp"},
                    {"name": "category", "label": "Category", "field": "category"},
                    {"name": "message", "label": "Message", "field": "message", "align": "left"},
                    {"name": "details", "label": "Details", "field": "details", "align": "left"},
                ],
                rows=[
                    {
                        "id": a.id,
                        "timestamp": a.timestamp,
                        "category": a.category,
                        "message": a.message,
                        "details": a.details or "",
                    }
                    for a in repo.get_recent_audit_entries(limit=100)
                ],
                row_key="id",
            ).classes("w-full").props("dense flat bordered wrap-cells")
