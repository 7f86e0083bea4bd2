from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup

ROOT = Path(__file__).resolve().parent


def _read_version() -> str:
    for line in (ROOT / "src" / "prompt_dj" / "__init__.py").read_text(encoding="utf-8").splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    raise RuntimeError("Unable to find __version__")


setup(
    name="prompt-dj",
    version=_read_version(),
    description="Live prompt-driven controller for streaming music generation backends",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "pydub>=0.25",
        "audioop-lts; python_version>='3.13'",
        "mido>=1.3",
        "python-rtmidi>=1.5",
        "streamlit>=1.37",
        "sounddevice>=0.4.6",
        "websockets>=12.0",
    ],
    extras_require={"test": ["pytest>=7.4"]},
    entry_points={"console_scripts": ["prompt-dj=prompt_dj.cli:main"]},
)
