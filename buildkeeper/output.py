"""
Rich Output Utilities
=====================

Unified terminal output for buildkeeper using the Rich library.
Every component prints through the helpers below so styling stays consistent
and the console can be swapped out in tests.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class KeeperColors:
    """Palette using hex for truecolor terminals."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # amber
    info: str = "#22D3EE"      # cyan
    steel: str = "#94A3B8"
    ok: str = "#22C55E"
    warn: str = "#FBBF24"
    err: str = "#EF4444"


def keeper_theme(colors: KeeperColors = KeeperColors()) -> Theme:
    """
    Rich Theme for the buildkeeper CLI.

    Style names are semantic:
      console.print("...", style="bk.ok")
    """
    return Theme(
        {
            "bk.accent": f"bold {colors.accent}",
            "bk.muted": f"{colors.dim}",
            "bk.text": f"{colors.ink}",
            "bk.border": f"{colors.info}",

            "bk.ok": f"bold {colors.ok}",
            "bk.warn": f"bold {colors.warn}",
            "bk.err": f"bold {colors.err}",
            "bk.info": f"{colors.info}",

            "bk.key": f"{colors.steel}",
            "bk.value": f"{colors.ink}",
            "bk.number": f"bold {colors.accent}",
            "bk.path": f"{colors.info}",

            "bk.table.header": f"bold {colors.info}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the status glyphs."""
    if os.name == "nt":
        try:
            encoding = sys.stdout.encoding or "utf-8"
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "retry": "↻",
    "alert": "▲",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
    "retry": "[~]",
    "alert": "[^]",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=keeper_theme())

_VERBOSE = False


def set_verbose(verbose: bool) -> None:
    """Set global verbosity level."""
    global _VERBOSE
    _VERBOSE = verbose


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[bk.ok]{icon('check')} {escape(message)}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[bk.err]{icon('cross')} {escape(message)}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bk.warn]{icon('warning')} {escape(message)}[/]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[bk.info]{icon('info')} {escape(message)}[/]")


def print_muted(message: str) -> None:
    """Print muted/secondary text."""
    console.print(f"[bk.muted]{escape(message)}[/]")


def print_step(message: str) -> None:
    """Print an indented progress line for a sub-step."""
    console.print(f"  [bk.muted]{icon('arrow_right')} {escape(message)}[/]")


def print_verbose(message: str) -> None:
    """Print muted text only when verbose mode is on."""
    if _VERBOSE:
        print_muted(message)


# =============================================================================
# Headers & Sections
# =============================================================================

def print_header(title: str, style: str = "bk.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


def print_subheader(title: str, style: str = "bk.info") -> None:
    """Print a smaller subsection header."""
    console.print(f"\n[{style}]{icon('arrow_right')} {title}[/]")


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "bk.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bk.key")
    table.add_column("Value", style="bk.value")

    for key, value in data.items():
        table.add_row(key, "-" if value is None else escape(str(value)))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def print_list(
    items: Sequence[str],
    *,
    numbered: bool = False,
    style: str = "bk.text",
    bullet_style: str = "bk.accent",
) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        if numbered:
            console.print(f"  [{bullet_style}]{i}.[/] [{style}]{escape(item)}[/]")
        else:
            console.print(f"  [{bullet_style}]{icon('bullet')}[/] [{style}]{escape(item)}[/]")


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    border_style: str = "bk.border",
    header_style: str = "bk.table.header",
) -> Table:
    """Create a styled Rich Table."""
    table = Table(
        title=title,
        header_style=header_style,
        border_style=border_style,
        title_style="bk.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


def print_table(table: Table) -> None:
    """Print a Rich Table to the console."""
    console.print(table)


def status_markup(status: str) -> str:
    """Color a success/warning/error status word."""
    styles = {
        "success": ("bk.ok", icon("check")),
        "warning": ("bk.warn", icon("warning")),
        "error": ("bk.err", icon("cross")),
    }
    style, glyph = styles.get(status, ("bk.muted", icon("bullet")))
    return f"[{style}]{glyph} {status}[/]"


# =============================================================================
# Spinners
# =============================================================================

@contextmanager
def spinner(message: str, *, style: str = "bk.accent") -> Iterator[Status]:
    """Show a spinner while a blocking step runs."""
    with console.status(f"[{style}]{escape(message)}[/]") as status:
        yield status


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to render through the themed console.

    Usage:
        setup_rich_logging()
        logging.getLogger(__name__).warning("Could not save metrics")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
        force=True,
    )
