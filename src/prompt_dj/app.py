"""Streamlit control surface for Prompt DJ."""

from __future__ import annotations

import concurrent.futures
import importlib
import importlib.util
import logging
import sys
from dataclasses import dataclass
from typing import Any, Coroutine


if __package__ in {None, ""}:  # pragma: no cover - exercised when run via ``streamlit run``
    # ``streamlit run path/to/app.py`` executes this file as a script, so derive
    # the package context from the file location before importing siblings.
    from pathlib import Path

    module = sys.modules[__name__]
    package_dir = Path(__file__).resolve().parent
    search_root = package_dir.parent
    if str(search_root) not in sys.path:
        sys.path.insert(0, str(search_root))

    module.__package__ = package_dir.name
    canonical_name = f"{package_dir.name}.app"
    spec = importlib.util.spec_from_file_location(canonical_name, __file__)
    if spec is not None:
        module.__spec__ = spec
        if spec.loader is not None:
            module.__loader__ = spec.loader
    sys.modules.setdefault(canonical_name, module)
    importlib.import_module(package_dir.name)

import streamlit as st

from prompt_dj.config import configure_logging, load_settings
from prompt_dj.controller import PromptDjController
from prompt_dj.errors import StorageError
from prompt_dj.midi_input import MidiBackendUnavailable, MidiInputManager
from prompt_dj.notifications import QueueNotifier
from prompt_dj.output import AudioBackendUnavailable
from prompt_dj.presets import DEFAULT_CATEGORY, PresetStore
from prompt_dj.prompts import MAX_WEIGHT
from prompt_dj.recording import artifact_filename
from prompt_dj.runtime import BackgroundLoop
from prompt_dj.state import PlaybackState, RecordingState

logger = logging.getLogger(__name__)

GRID_COLUMNS = 4

PLAY_LABELS = {
    PlaybackState.PLAYING: "⏸️ Pause",
    PlaybackState.LOADING: "⏳ Loading…",
    PlaybackState.PAUSED: "▶️ Resume",
    PlaybackState.STOPPED: "▶️ Play",
}


@dataclass
class Services:
    runtime: BackgroundLoop
    controller: PromptDjController
    notifier: QueueNotifier
    presets: PresetStore
    audio_error: str | None = None


@st.cache_resource(show_spinner="Connecting to the music session…")
def _services() -> Services:
    settings = load_settings()
    configure_logging(settings.log_level)

    runtime = BackgroundLoop().start()
    notifier = QueueNotifier()
    controller = PromptDjController(settings, notifier=notifier)
    services = Services(
        runtime=runtime,
        controller=controller,
        notifier=notifier,
        presets=PresetStore(settings.presets_path),
    )

    try:
        controller.output.open()
    except AudioBackendUnavailable as exc:
        logger.warning("Audio output unavailable: %s", exc)
        services.audio_error = str(exc)

    async def _start() -> None:
        controller.start_metering()
        await controller.reconnect()

    runtime.run(_start(), timeout=settings.connect_timeout + 5)
    return services


def _submit(services: Services, coro: Coroutine[Any, Any, Any]) -> None:
    """Fire-and-forget a controller coroutine, logging failures."""

    def _done(future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc)

    services.runtime.submit(coro).add_done_callback(_done)


def _call(services: Services, func, *args: Any) -> Any:
    """Run a synchronous controller method on the loop thread and wait for it."""

    async def _invoke() -> Any:
        return func(*args)

    return services.runtime.run(_invoke())


def _follow_board(key: str, value: Any) -> None:
    """Push a board value into a widget when it changed outside the widget, e.g. via MIDI."""

    seen_key = f"{key}-seen"
    if st.session_state.get(seen_key) != value:
        st.session_state[key] = value
        st.session_state[seen_key] = value


def _initialise_state() -> None:
    if "midi_manager" not in st.session_state:
        try:
            st.session_state.midi_manager = MidiInputManager()
            st.session_state.midi_status = "Disconnected"
        except MidiBackendUnavailable:
            st.session_state.midi_manager = None
            st.session_state.midi_status = "Backend unavailable"


def _render_header(services: Services) -> None:
    st.title("Prompt DJ")
    st.caption("Blend weighted prompts into a live stream of generated music. Map sliders to MIDI knobs.")
    if services.audio_error:
        st.warning(f"Audio output disabled: {services.audio_error}")


@st.fragment(run_every="250ms")
def _status_strip(services: Services) -> None:
    controller = services.controller
    for notification in services.notifier.drain():
        st.toast(notification.message)

    col1, col2 = st.columns([1, 3])
    with col1:
        state = controller.playback_state.value.title()
        suffix = " · connection error" if controller.connection_error else ""
        st.markdown(f"**{state}**{suffix}")
    with col2:
        st.progress(min(1.0, max(0.0, controller.audio_level)), text="Output level")


def _transport_controls(services: Services) -> None:
    controller = services.controller
    col_play, col_stop, col_reconnect, col_record = st.columns(4)

    with col_play:
        label = PLAY_LABELS[controller.playback_state]
        if st.button(label, use_container_width=True):
            services.runtime.run(controller.toggle_playback(), timeout=controller.settings.connect_timeout + 5)
    with col_stop:
        if st.button("⏹️ Stop", use_container_width=True, disabled=controller.playback_state is PlaybackState.STOPPED):
            services.runtime.run(controller.stop())
    with col_reconnect:
        if st.button("🔄 Reconnect", use_container_width=True):
            services.runtime.run(controller.reconnect(), timeout=controller.settings.connect_timeout + 5)
    with col_record:
        recorder = controller.recorder
        record_label = "⏹️ Stop recording" if recorder.is_recording else "⏺️ Record"
        if st.button(record_label, use_container_width=True, disabled=recorder.disabled):
            services.runtime.run(controller.toggle_recording(), timeout=60)

    artifact = controller.recorder.artifact
    if artifact is not None and controller.recorder.state is RecordingState.RECORDED_AVAILABLE:
        st.download_button(
            "⬇️ Download recording",
            data=artifact.data,
            file_name=artifact_filename(artifact),
            mime=artifact.mime_type,
            on_click=_call,
            args=(services, controller.recorder.mark_downloaded),
        )


def _prompt_grid(services: Services) -> None:
    controller = services.controller
    prompts = controller.prompt_snapshot()
    levels = controller.prompt_levels()
    learning = controller.board.learning
    columns = st.columns(GRID_COLUMNS)

    for index, prompt in enumerate(prompts):
        with columns[index % GRID_COLUMNS]:
            with st.container(border=True):
                text_key = f"text-{prompt.prompt_id}"
                weight_key = f"weight-{prompt.prompt_id}"
                _follow_board(text_key, prompt.text)
                _follow_board(weight_key, float(prompt.weight))
                text = st.text_input("Prompt", key=text_key)
                weight = st.slider("Weight", min_value=0.0, max_value=MAX_WEIGHT, step=0.01, key=weight_key)
                st.progress(min(1.0, levels.get(prompt.prompt_id, 0.0) / MAX_WEIGHT))

                cc_col, learn_col = st.columns(2)
                with cc_col:
                    st.caption(f"CC {prompt.cc}" + ("" if prompt.channel is None else f" · ch {prompt.channel + 1}"))
                with learn_col:
                    learn_label = "Learning…" if learning == prompt.prompt_id else "Learn"
                    if st.button(learn_label, key=f"learn-{prompt.prompt_id}"):
                        _call(services, controller.board.start_learning, prompt.prompt_id)

                if controller.filtered.blocks(prompt):
                    st.error("Filtered by safety policy", icon="🚫")

                if text != prompt.text or abs(weight - prompt.weight) > 1e-9:
                    st.session_state[f"{text_key}-seen"] = text
                    st.session_state[f"{weight_key}-seen"] = weight
                    services.runtime.run(controller.update_prompt(prompt.prompt_id, text=text, weight=weight))


def _midi_block(services: Services) -> None:
    st.sidebar.markdown("## MIDI controller")
    manager: MidiInputManager | None = st.session_state.midi_manager

    if manager is None:
        st.sidebar.info("Install `mido` and `python-rtmidi` to map prompts to MIDI knobs.")
        return

    ports = manager.refresh()
    selected_port = st.sidebar.selectbox("Input port", ports or ["None detected"], disabled=not ports)

    col1, col2 = st.sidebar.columns(2)
    with col1:
        if st.button("Connect", disabled=not ports or st.session_state.midi_status == "Connected"):
            manager.start_listening(selected_port)
            st.session_state.midi_status = "Connected"
    with col2:
        if st.button("Disconnect", disabled=st.session_state.midi_status != "Connected"):
            manager.stop_listening()
            st.session_state.midi_status = "Disconnected"

    port_label = manager.active_port or "none"
    st.sidebar.caption(f"Status: {st.session_state.midi_status} ({port_label})")

    if st.session_state.midi_status == "Connected":
        manager.drain(lambda change: _submit(services, services.controller.apply_control_change(change)))


def _preset_browser(services: Services) -> None:
    store = services.presets
    controller = services.controller
    st.sidebar.markdown("## Presets")

    with st.sidebar.form("save-preset", clear_on_submit=True):
        name = st.text_input("Name", key="preset-name")
        description = st.text_input("Description", key="preset-description")
        category = st.text_input("Category", placeholder=DEFAULT_CATEGORY, key="preset-category")
        if st.form_submit_button("Save current prompts") and name.strip():
            try:
                store.create(name.strip(), controller.prompt_snapshot(), description=description, category=category)
                st.toast(f'Preset "{name.strip()}" saved.')
            except StorageError as exc:
                st.error(str(exc))

    categories = ["All Presets", *store.categories()]
    selected_category = st.sidebar.selectbox("Browse category", categories, key="preset-filter")
    term = st.sidebar.text_input("Search presets", key="preset-search")
    presets = store.search(term, None if selected_category == "All Presets" else selected_category)
    if not presets:
        st.sidebar.caption("No presets found.")
    else:
        labels = {preset.id: f"{preset.name} · {preset.category}" for preset in presets}
        preset_id = st.sidebar.selectbox("Preset", list(labels), format_func=labels.__getitem__, key="preset-selected")
        load_col, copy_col, delete_col = st.sidebar.columns(3)
        try:
            with load_col:
                if st.button("Load", key="preset-load"):
                    prompts = store.apply(preset_id, controller.prompt_snapshot())
                    services.runtime.run(controller.load_prompts(prompts))
                    st.toast(f'Preset "{store.get(preset_id).name}" loaded.')
            with copy_col:
                if st.button("Duplicate", key="preset-duplicate"):
                    store.duplicate(preset_id)
                    st.toast("Preset duplicated.")
            with delete_col:
                if st.button("Delete", key="preset-delete"):
                    removed = store.delete(preset_id)
                    st.toast(f'Preset "{removed.name}" deleted.')
        except StorageError as exc:
            st.sidebar.error(str(exc))

    upload = st.sidebar.file_uploader("Import presets", type=["json"], key="preset-upload")
    if upload is not None and st.sidebar.button("Import", key="preset-import"):
        try:
            added, updated = store.import_presets(upload.getvalue())
            st.toast(f"Presets imported: {added} new, {updated} updated.")
        except (ValueError, StorageError) as exc:
            st.sidebar.error(f"Import failed: {exc}")

    if len(store):
        st.sidebar.download_button(
            "Export presets",
            data=store.export_json(),
            file_name="prompt_dj_presets.json",
            mime="application/json",
        )


def main() -> None:
    st.set_page_config(page_title="Prompt DJ", page_icon="🎛️", layout="wide")

    _initialise_state()
    services = _services()

    _render_header(services)
    _status_strip(services)
    _transport_controls(services)
    _prompt_grid(services)
    _midi_block(services)
    _preset_browser(services)


if __name__ == "__main__":  # pragma: no cover
    main()
