"""Command-line helpers for launching Prompt DJ."""

from __future__ import annotations

import argparse
import asyncio
import logging
import subprocess
import sys
from pathlib import Path
from typing import Sequence

from .config import configure_logging, load_settings
from .controller import PromptDjController
from .errors import PromptDjError
from .output import AudioBackendUnavailable, drive_virtual_clock
from .prompts import DEFAULT_PROMPTS, FIRST_DEFAULT_CC, Prompt, PromptBoard

logger = logging.getLogger(__name__)


def _app_path() -> Path:
    return Path(__file__).with_name("app.py")


def _launch_streamlit(
    app_path: Path | None = None,
    *,
    streamlit_args: Sequence[str] | None = None,
) -> None:
    """Start the Streamlit runtime for the packaged app."""

    target = app_path or _app_path()
    args = [sys.executable, "-m", "streamlit", "run", str(target)]
    if streamlit_args:
        args.extend(streamlit_args)

    subprocess.run(args, check=True)


def _run_smoke_test(timeout: float = 5.0) -> None:
    """Run a headless smoke test to ensure the app loads without errors."""

    from streamlit.testing.v1 import AppTest

    app_test = AppTest.from_file(str(_app_path()))
    app_test.run(timeout=timeout)

    if app_test.exception:
        print("Streamlit smoke test failed:", app_test.exception)
        raise SystemExit(1)


def parse_prompt(spec: str, index: int) -> Prompt:
    """Turn ``"text:weight"`` (weight optional, default 1.0) into a prompt."""

    text, sep, raw_weight = spec.rpartition(":")
    if not sep:
        text, raw_weight = spec, "1.0"
    try:
        weight = float(raw_weight)
    except ValueError:
        # A colon that is part of the text rather than a weight separator.
        text, weight = spec, 1.0
    text = text.strip()
    if not text:
        raise ValueError(f"prompt {spec!r} has no text")
    color = DEFAULT_PROMPTS[index % len(DEFAULT_PROMPTS)][0]
    return Prompt(
        prompt_id=f"prompt-{index}",
        text=text,
        weight=weight,
        cc=FIRST_DEFAULT_CC + index,
        color=color,
    )


async def _run_headless(
    prompts: Sequence[Prompt],
    *,
    duration: float,
    record_dir: Path | None = None,
    use_audio_device: bool = True,
) -> int:
    settings = load_settings()
    controller = PromptDjController(settings, board=PromptBoard(prompts))
    clock: asyncio.Task[None] | None = None

    if use_audio_device:
        try:
            controller.output.open()
        except AudioBackendUnavailable as exc:
            logger.warning("%s Falling back to a silent virtual clock.", exc)
    if not controller.output.is_open:
        clock = asyncio.create_task(drive_virtual_clock(controller.output), name="prompt-dj-virtual-clock")

    try:
        if not await controller.play():
            return 1
        if record_dir is not None:
            await controller.toggle_recording()
        logger.info("Streaming for %.1f seconds", duration)
        await asyncio.sleep(duration)

        if record_dir is not None and controller.recorder.is_recording:
            if await controller.recorder.stop() is not None:
                path = controller.recorder.save(record_dir)
                print(f"Recording saved to {path}")
        await controller.stop()
    except PromptDjError as exc:
        logger.error("Headless session failed: %s", exc)
        return 1
    finally:
        if clock is not None:
            clock.cancel()
        await controller.teardown()
    return 0 if not controller.connection_error else 1


def main(argv: Sequence[str] | None = None) -> None:
    """Launch the Streamlit UI, run diagnostics or stream headlessly."""

    parser = argparse.ArgumentParser(description="Utilities for the Prompt DJ controller")
    parser.add_argument(
        "--smoke-test",
        action="store_true",
        help="Run a quick headless Streamlit smoke test instead of launching the server.",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Stream without the UI using the prompts given with --prompt.",
    )
    parser.add_argument(
        "--prompt",
        dest="prompts",
        action="append",
        default=[],
        metavar="TEXT[:WEIGHT]",
        help="Prompt for headless mode; repeat for several. Example: --prompt 'Shoegaze:1.5'",
    )
    parser.add_argument("--duration", type=float, default=30.0, help="Headless streaming time in seconds.")
    parser.add_argument("--record", type=Path, default=None, metavar="DIR", help="Save a recording into DIR.")
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Do not open an audio device in headless mode; audio is only recorded.",
    )
    parser.add_argument(
        "streamlit_args",
        nargs=argparse.REMAINDER,
        help=(
            "Any additional arguments after '--' are forwarded directly to Streamlit. "
            "Example: prompt-dj -- --server.headless true"
        ),
    )

    args = parser.parse_args(argv)

    if args.smoke_test:
        _run_smoke_test()
        return

    if args.headless:
        if not args.prompts:
            parser.error("--headless needs at least one --prompt")
        try:
            prompts = [parse_prompt(spec, index) for index, spec in enumerate(args.prompts)]
        except ValueError as exc:
            parser.error(str(exc))
        configure_logging(load_settings().log_level)
        code = asyncio.run(
            _run_headless(
                prompts,
                duration=max(0.0, args.duration),
                record_dir=args.record,
                use_audio_device=not args.no_audio,
            )
        )
        if code:
            raise SystemExit(code)
        return

    forwarded_args = [arg for arg in args.streamlit_args if arg != "--"] if args.streamlit_args else []

    _launch_streamlit(streamlit_args=forwarded_args)


if __name__ == "__main__":  # pragma: no cover
    main()
