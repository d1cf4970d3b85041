"""Command-line interface for cmdgate."""

from cmdgate.cli.app import main
from cmdgate.cli.render import RichConfirmer, render_outcome, verdict_panel

__all__ = [
    "RichConfirmer",
    "main",
    "render_outcome",
    "verdict_panel",
]
