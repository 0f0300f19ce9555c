#!/usr/bin/env python3
"""
Real-time speech transcription with a Gradio UI.

- capture worker -> PyAudio frames, tapped by the parallel recorder
- windowing worker -> VAD tags and overlapping inference windows
- inference worker -> NeMo Parakeet TDT with device fallback
- stabilizer -> provisional/committed transcript for the UI
"""

from .app.gradio_ui import launch
from .utils import setup_logging


def main():
    """Main entry point for the transcription application."""
    setup_logging()
    launch()


if __name__ == "__main__":
    main()
