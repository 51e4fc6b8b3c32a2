# app.py
import base64
import logging
import os
from typing import Optional

import pandas as pd
import streamlit as st

from pickem_core.analytics import (
    area_frequencies, asset_names, category_popularity, categorized_library, ordered_cells,
)
from pickem_core.config import DEFAULT_CONFIG_PATH, ensure_config_exists, load_config
from pickem_core.constants import (
    AREAS, AREA_SLOTS, AREA_TITLES, ASCENDING, DESCENDING, MAX_ROW_COUNT, MIN_ROW_COUNT, SETTINGS_LIMITS, clamp,
)
from pickem_core.errors import DuplicatePickError, FormatError, PickemError, PreconditionError, StorageError
from pickem_core.history import HistoryManager
from pickem_core.io import (
    export_document, export_rows, export_stats, import_document, slot_columns, stats_frame, stats_to_csv_bytes,
)
from pickem_core.models import initial_document
from pickem_core.persistence import PersistenceGateway, file_save_capability, quick_save
from pickem_core import store

# ---------- Page ----------
st.set_page_config(page_title="Pick'em Sheet Editor", layout="wide")


# ---------- Engine (one per browser session) ----------
def _init_state():
    ss = st.session_state
    if "config" not in ss:
        config_path = os.environ.get("PICKEM_CONFIG", DEFAULT_CONFIG_PATH)
        ensure_config_exists(config_path)
        ss.config = load_config(config_path)
        logging.basicConfig(level=getattr(logging, ss.config.log_level.upper(), logging.INFO))
    if "history" not in ss:
        gateway = PersistenceGateway.from_config(ss.config)
        doc = None
        try:
            doc = gateway.load()
        except (FormatError, StorageError) as e:
            ss.setdefault("notice", f"Saved state could not be loaded, starting fresh: {e}")
        ss.history = HistoryManager(doc or initial_document(), max_history=ss.config.max_history)
        gateway.attach(ss.history)
        ss.gateway = gateway
    ss.setdefault("project_path", "")
    ss.setdefault("stats_sort", DESCENDING)
    ss.setdefault("stats_search", "")

_init_state()
history: HistoryManager = st.session_state.history
gateway: PersistenceGateway = st.session_state.gateway


def run(mutator, *args, **kwargs):
    """Send one intent through the history; domain errors become notices."""
    try:
        return history.apply(mutator, *args, **kwargs)
    except DuplicatePickError as e:
        st.warning(f"{e.asset} is already picked in {AREA_TITLES.get(e.area, e.area)} for this player.")
    except PreconditionError as e:
        st.warning(str(e))
    except PickemError as e:
        st.error(str(e))
    return None


# widget keys follow the document value, so undo and imports reset the widget
def _tag(value) -> str:
    return format(hash(value) & 0xFFFFFFFF, "x")


def _ingest_image(upload) -> Optional[str]:
    data = upload.getvalue()
    if not data:
        return None
    mime = upload.type or "image/png"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


doc = history.current
stage = doc.active_stage
names = asset_names(doc.library)


# ---------- Sidebar ----------
with st.sidebar:
    st.header("⚙️ Sheet")
    c_undo, c_redo = st.columns(2)
    with c_undo:
        if st.button("Undo", disabled=not history.can_undo, use_container_width=True):
            history.undo()
            st.rerun()
    with c_redo:
        if st.button("Redo", disabled=not history.can_redo, use_container_width=True):
            history.redo()
            st.rerun()
    st.caption(f"History {history.index + 1} / {len(history.history)}")

    if gateway.last_error is not None:
        st.warning(f"Autosave failed, retrying: {gateway.last_error}")
    if "notice" in st.session_state:
        st.warning(st.session_state.pop("notice"))

    st.divider()
    st.subheader("🎨 Design")
    bg = st.color_picker("Background", value=doc.bg if doc.bg.startswith("#") else "#101018")
    if bg != doc.bg:
        run(store.set_setting, "bg", bg)
    for key in ("bgScale", "verticalPad", "horizontalPad", "borderRadius", "nickColWidth", "tableOffsetY"):
        lo, hi = SETTINGS_LIMITS[key]
        value = st.number_input(key, min_value=lo, max_value=hi, value=getattr(doc, key), step=1)
        if value != getattr(doc, key):
            run(store.set_setting, key, value)
    for key in ("avatarsEnabled", "highlightPicksEnabled", "popularitySortEnabled", "transparentBackgroundEnabled"):
        flag = st.checkbox(key, value=getattr(doc, key))
        if flag != getattr(doc, key):
            run(store.set_setting, key, flag)
    if st.button("Reset design", use_container_width=True):
        run(store.reset_design)
        st.rerun()

    st.divider()
    st.subheader("💾 Save")
    st.session_state.project_path = st.text_input("Project file", value=st.session_state.project_path)
    if st.button("Quick save", use_container_width=True):
        try:
            blob = quick_save(history.current, file_save_capability(st.session_state.project_path))
        except StorageError as e:
            st.session_state.project_path = ""
            st.error(f"Could not write the project file: {e}")
        else:
            if blob is None:
                st.success("Project saved.")
            else:
                st.download_button("Download project", data=blob.data, file_name=blob.filename,
                                   mime=blob.mime, use_container_width=True)
    if st.button("Reset everything", use_container_width=True):
        run(store.reset_all)
        st.rerun()


# ---------- Stages ----------
st.title("Pick'em Sheet Editor")
stage_ids = [s.id for s in doc.stages]
c1, c2, c3, c4 = st.columns([3, 2, 1, 1])
with c1:
    chosen = st.selectbox("Stage", stage_ids, index=stage_ids.index(stage.id),
                          format_func=lambda sid: doc.stage_by_id(sid).name)
    if chosen != stage.id:
        run(store.set_active_stage, chosen)
        st.rerun()
with c2:
    new_name = st.text_input("Stage name", value=stage.name)
    if new_name != stage.name:
        run(store.rename_stage, stage.id, new_name)
with c3:
    if st.button("Add stage", use_container_width=True):
        run(store.add_stage)
        st.rerun()
with c4:
    if st.button("Delete stage", use_container_width=True):
        if run(store.delete_stage, stage.id) is not None:
            st.rerun()

doc = history.current
stage = doc.active_stage


# ---------- Table ----------
count = st.number_input("Rows", min_value=MIN_ROW_COUNT, max_value=MAX_ROW_COUNT,
                        value=clamp(len(stage.rows), MIN_ROW_COUNT, MAX_ROW_COUNT), step=1)
if count != len(stage.rows):
    run(store.set_row_count, count)
    st.rerun()

counts = area_frequencies(stage.stats) if doc.popularitySortEnabled else None


def _cell_label(cell) -> str:
    if not cell.src:
        return ""
    label = names.get(cell.src, cell.src)
    return f"✓ {label}" if doc.highlightPicksEnabled and cell.correct else label


table = pd.DataFrame([
    {"Player": r.nick, **{
        col: _cell_label(c)
        for col, c in zip(slot_columns(), ordered_cells(
            r, stage.correctTeams, doc.highlightPicksEnabled, doc.popularitySortEnabled, counts,
        ))
    }}
    for r in stage.rows
])
st.dataframe(table, use_container_width=True)

with st.expander("✏️ Edit row"):
    idx = st.number_input("Row", min_value=1, max_value=len(stage.rows), value=1, step=1) - 1
    row = stage.rows[idx]
    nick = st.text_input("Nickname", value=row.nick, key=f"nick_{stage.id}_{idx}_{_tag(row.nick)}")
    if nick != row.nick:
        run(store.set_row_nick, idx, nick)
    srcs = [""] + [a.src for a in doc.library]
    for area in AREAS:
        cols = st.columns(AREA_SLOTS[area])
        for slot, col in enumerate(cols):
            current = row.picks(area)[slot] or ""
            options = srcs if current in srcs else srcs + [current]
            with col:
                pick = st.selectbox(
                    f"{AREA_TITLES[area]} {slot + 1}", options,
                    index=options.index(current),
                    format_func=lambda s: names.get(s, s[:24]) if s else "(empty)",
                    key=f"pick_{stage.id}_{idx}_{area}_{slot}_{_tag(current)}",
                )
            if pick != current:
                run(store.set_pick, idx, area, slot, pick or None)
    m1, m2, m3 = st.columns(3)
    with m1:
        if st.button("Move up"):
            run(store.move_row, idx, -1)
            st.rerun()
    with m2:
        if st.button("Move down"):
            run(store.move_row, idx, 1)
            st.rerun()
    with m3:
        if st.button("Clear row"):
            run(store.clear_row_picks, idx)
            st.rerun()


# ---------- Library ----------
with st.expander("🖼️ Library"):
    uploads = st.file_uploader("Add icons", type=["png", "jpg", "jpeg", "webp"], accept_multiple_files=True)
    if uploads and st.button("Add to library"):
        assets = []
        for up in uploads:
            src = _ingest_image(up)
            if src:
                assets.append(store.make_asset(os.path.splitext(up.name)[0], src))
        run(store.add_assets, assets)
        st.rerun()
    search = st.text_input("Search icons")
    for group in categorized_library(doc, search):
        st.markdown(f"**{group['name']}** ({len(group['assets'])})")
        for asset in group["assets"]:
            st.caption(asset.name or asset.id)


# ---------- Answer key & stats ----------
st.subheader("🏆 Stats")
k1, k2, k3 = st.columns(3)
for area, col in zip(AREAS, (k1, k2, k3)):
    with col:
        # answer-key entries outside the library stay selectable
        options = [a.src for a in doc.library]
        options += [x for x in stage.correct(area) if x not in options]
        chosen_key = st.multiselect(
            f"Correct {AREA_TITLES[area]}", options,
            default=list(stage.correct(area)),
            format_func=lambda s: names.get(s, s[:24]),
            key=f"key_{stage.id}_{area}_{_tag(stage.correct(area))}",
        )
        for src in set(chosen_key) ^ set(stage.correct(area)):
            run(store.toggle_correct_team, area, src)

a1, a2 = st.columns(2)
with a1:
    if st.button("Add table to stats", use_container_width=True):
        result = run(store.commit_rows_to_stats)
        if result is not None:
            st.info(result[1].message)
with a2:
    if st.button("Clear stats", use_container_width=True):
        run(store.clear_stats)
        st.rerun()

stage = history.current.active_stage
st.session_state.stats_search = st.text_input("Search players", value=st.session_state.stats_search)
st.session_state.stats_sort = st.radio("Order", [DESCENDING, ASCENDING], horizontal=True,
                                       index=0 if st.session_state.stats_sort == DESCENDING else 1)
st.dataframe(
    stats_frame(stage, doc.library, st.session_state.stats_search, "score", st.session_state.stats_sort)
    .drop(columns=["id"]),
    use_container_width=True,
)

pop = category_popularity(stage.stats, names)
for area in AREAS:
    st.caption(
        f"{AREA_TITLES[area]} most picked: "
        + ", ".join(f"{p.name} {p.percentage:.0f}%" if p else "-" for p in pop["popular"][area])
    )


# ---------- Export / import ----------
st.subheader("📄 Files")
e1, e2, e3, e4 = st.columns(4)
for col, blob in zip((e1, e2, e3), (export_document(doc), export_rows(doc), export_stats(doc))):
    with col:
        st.download_button(blob.filename, data=blob.data, file_name=blob.filename,
                           mime=blob.mime, use_container_width=True)
with e4:
    st.download_button("stats.csv", data=stats_to_csv_bytes(stage, doc.library),
                       file_name="stats.csv", mime="text/csv", use_container_width=True)

target = st.radio("Import as", ["full", "rows", "stats"], horizontal=True)
upload = st.file_uploader("Import file", type=["pickemfull", "pickem", "json"])
if upload is not None and st.button("Import"):
    try:
        imported = import_document(upload.getvalue(), target, history.current)
    except PickemError as e:
        st.error(f"Import failed: {e}")
    else:
        if target == "full":
            history.reset(imported)
        else:
            history.commit(imported)
        st.success("Imported.")
        st.rerun()
