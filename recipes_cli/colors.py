"""ANSI color helpers for terminal output."""

import sys


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


def color(text: str, *codes) -> str:
    """Apply color codes to text (plain text when not on a terminal)."""
    if not sys.stdout.isatty():
        return text
    return "".join(codes) + text + Colors.RESET
