from __future__ import annotations

from contextlib import contextmanager

from nicegui import ui

from knitboard.core.models import ERROR, WARNING, StagedRow


_THEME_APPLIED = False


def apply_theme() -> None:
    """Apply a lightweight global theme."""
    ui.colors(
        primary="#7c3aed",  # violet-600
        secondary="#0ea5e9",  # sky-500
        positive="#16a34a",  # green-600
        negative="#dc2626",  # red-600
        warning="#f59e0b",  # amber-500
    )

    ui.add_css(
        """
        body { background: #f8fafc; }
        .kb-container { max-width: 1400px; margin: 0 auto; padding: 16px; }
        .kb-subtitle { color: #475569; }
        .kb-header { border-bottom: 1px solid rgba(15, 23, 42, 0.08); }
        .kb-review-table .q-table th, .kb-review-table .q-table td { padding: 4px 8px; }
        .kb-review-table td { white-space: normal !important; }
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
    with ui.element("div").classes("kb-container"):
        yield


def render_nav(active: str | None = None) -> None:
    ensure_theme()
    active_key = active or "dashboard"
    sections: list[tuple[str, str, str]] = [
        ("dashboard", "Machines", "/"),
        ("import", "Daily import", "/import"),
        ("settings", "Settings", "/settings"),
    ]

    with ui.header().classes("kb-header bg-white text-slate-900"):
        with ui.row().classes("w-full items-center justify-between gap-4 px-4 py-2"):
            ui.label("Knitting Production").classes("text-xl md:text-2xl font-semibold leading-none")
            with ui.row().classes("items-center gap-1"):
                for key, label, path in sections:
                    props = "dense no-caps color=primary" + (" unelevated" if key == active_key else " flat")
                    ui.button(label, on_click=lambda p=path: ui.navigate.to(p)).props(props)


def _fmt(value: float) -> str:
    return f"{value:,.1f}".rstrip("0").rstrip(".")


def staged_table_rows(staged: list[StagedRow]) -> list[dict]:
    rows: list[dict] = []
    for s in staged:
        split = ""
        if s.is_split:
            split = "; ".join(f"{d.client} / {d.fabric} / {_fmt(d.production)}" for d in s.split_details)
        rows.append(
            {
                "machine_id": s.machine_id,
                "machine": s.machine_name,
                "previous_date": s.previous_date.isoformat() if s.previous_date else "No data",
                "previous": f"{s.previous_status} · {s.previous_client or '-'} · {_fmt(s.previous_remaining)}",
                "work_centers": ", ".join(s.source_work_centers),
                "client": s.import_client,
                "fabric": s.import_fabric,
                "production": _fmt(s.import_production) if s.has_import_data else "",
                "scrap": _fmt(s.import_scrap) if s.has_import_data else "",
                "new_remaining": _fmt(s.new_remaining),
                "new_status": s.new_status,
                "validation": s.validation_status,
                "message": s.validation_message,
                "split": split,
                "selected": s.selected,
            }
        )
    return rows


STAGED_COLUMNS = [
    {"name": "validation", "label": "", "field": "validation"},
    {"name": "machine", "label": "Machine", "field": "machine", "align": "left"},
    {"name": "previous_date", "label": "Prev. date", "field": "previous_date"},
    {"name": "previous", "label": "Previous", "field": "previous", "align": "left"},
    {"name": "work_centers", "label": "Work centers", "field": "work_centers", "align": "left"},
    {"name": "client", "label": "Client", "field": "client"},
    {"name": "fabric", "label": "Fabric", "field": "fabric", "align": "left"},
    {"name": "production", "label": "Prod.", "field": "production"},
    {"name": "scrap", "label": "Scrap", "field": "scrap"},
    {"name": "new_remaining", "label": "New remaining", "field": "new_remaining"},
    {"name": "new_status", "label": "New status", "field": "new_status"},
    {"name": "message", "label": "Notes", "field": "message", "align": "left"},
]


def render_validation_slot(tbl) -> None:
    tbl.add_slot(
        "body-cell-validation",
        rf"""
<q-td :props="props" style="width: 36px">
  <q-icon v-if="props.value === '{ERROR}'" name="error" color="negative" size="18px">
    <q-tooltip>{{{{ props.row.message }}}} {{{{ props.row.split }}}}</q-tooltip>
  </q-icon>
  <q-icon v-else-if="props.value === '{WARNING}'" name="warning" color="warning" size="18px">
    <q-tooltip>{{{{ props.row.message }}}}</q-tooltip>
  </q-icon>
  <q-icon v-else name="check_circle" color="positive" size="18px" />
</q-td>
""",
    )
