"""
Color utilities for evmsim

ANSI styling for the trace printer and for warnings on stderr. Colors are
turned off when stdout is not a terminal, for TERM=dumb and when NO_COLOR is set.
"""

import os
import sys

SUPPORTS_COLOR = (
    hasattr(sys.stdout, 'isatty') and sys.stdout.isatty() and
    os.environ.get('TERM') != 'dumb' and
    not os.environ.get('NO_COLOR')
)


class Colors:
    """ANSI color codes for terminal output."""

    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    MAGENTA = '\033[35m'
    CYAN = '\033[36m'

    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_MAGENTA = '\033[95m'
    BRIGHT_CYAN = '\033[96m'

    BOLD = '\033[1m'
    DIM = '\033[2m'

    RESET = '\033[0m'

    @classmethod
    def disable(cls):
        """Disable all colors."""
        for attr in dir(cls):
            if not attr.startswith('_') and attr.isupper():
                setattr(cls, attr, '')


if not SUPPORTS_COLOR:
    Colors.disable()


def _paint(code: str, text: str) -> str:
    return f"{code}{text}{Colors.RESET}"


def cyan(text: str) -> str:
    return _paint(Colors.CYAN, text)

def bold(text: str) -> str:
    return _paint(Colors.BOLD, text)

def dim(text: str) -> str:
    return _paint(Colors.DIM, text)


# Semantic color functions
def error(text: str) -> str:
    """Errors, reverts and the failed-frame marker."""
    return _paint(Colors.BRIGHT_RED, text)

def success(text: str) -> str:
    return _paint(Colors.BRIGHT_GREEN, text)

def warning(text: str) -> str:
    """Recoverable problems: skipped ABIs, metadata timeouts, missing traces."""
    return _paint(Colors.BRIGHT_YELLOW, text)

def info(text: str) -> str:
    return _paint(Colors.BRIGHT_CYAN, text)

def address(text: str) -> str:
    """Format Ethereum address."""
    return _paint(Colors.BRIGHT_MAGENTA, text)

def number(text: str) -> str:
    """Gas, wei values and decoded integers."""
    return _paint(Colors.BRIGHT_YELLOW, text)

def call_type(kind: str) -> str:
    """Format a call frame type (CALL, DELEGATECALL, ...)."""
    palette = {
        'CALL': Colors.CYAN,
        'DELEGATECALL': Colors.MAGENTA,
        'STATICCALL': Colors.YELLOW,
        'CREATE': Colors.GREEN,
        'CREATE2': Colors.GREEN,
        'SELFDESTRUCT': Colors.RED,
    }
    return _paint(palette.get(kind, Colors.BLUE), f"[{kind}]")
