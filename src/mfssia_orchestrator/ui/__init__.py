"""Command-line surface: argparse router and plain-text rendering."""

from mfssia_orchestrator.ui.cli import build_parser, run_cli
from mfssia_orchestrator.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "build_parser", "create_renderer", "run_cli"]
