"""
Colored console logging shared by every pipeline stage.

Highlights row counts, percentages, file paths and stage prefixes so a
run can be followed by eye.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


# ANSI color codes for enhanced logging
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    BLACK = '\033[30m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    MAGENTA = '\033[35m'
    CYAN = '\033[36m'
    WHITE = '\033[37m'

    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_CYAN = '\033[96m'

    BG_RED = '\033[41m'


# Stage prefixes emitted by the pipeline, each with its own color
STAGE_COLORS = {
    'Load:': Colors.CYAN,
    'Filter:': Colors.BLUE,
    'Demographics:': Colors.MAGENTA,
    'Activities:': Colors.YELLOW,
    'Merge:': Colors.GREEN,
    'Models:': Colors.MAGENTA,
    'QC:': Colors.CYAN,
}

_KEYWORDS = {
    'completed': Colors.BRIGHT_GREEN,
    'failed': Colors.BRIGHT_RED,
    'error': Colors.BRIGHT_RED,
    'warning': Colors.YELLOW,
    'missing': Colors.YELLOW,
    'dropped': Colors.YELLOW,
    'loaded': Colors.GREEN,
    'saved': Colors.GREEN,
    'filtered': Colors.BLUE,
    'joined': Colors.BLUE,
    'aggregated': Colors.BLUE,
}

_PATH_PATTERN = r'((?:/|)(?:[^/\s]+/)*[^/\s]+\.(?:csv(?:\.gz)?|dat(?:\.gz)?|dta|ya?ml))'


class ColorFormatter(logging.Formatter):
    """Custom formatter to add colors to log messages"""

    LEVEL_COLORS = {
        'DEBUG': Colors.DIM + Colors.WHITE,
        'INFO': Colors.GREEN,
        'WARNING': Colors.YELLOW,
        'ERROR': Colors.BRIGHT_RED,
        'CRITICAL': Colors.BG_RED + Colors.WHITE,
    }

    def format(self, record):
        timestamp = f"{Colors.DIM}{Colors.BLACK}{self.formatTime(record)}{Colors.RESET}"
        level_color = self.LEVEL_COLORS.get(record.levelname, Colors.WHITE)
        level_text = f"{level_color}{record.levelname}{Colors.RESET}"
        message = self.enhance_message(record.getMessage())
        return f"{timestamp} - {level_text} - {message}"

    def enhance_message(self, message: str) -> str:
        """Add highlighting to the important parts of a log message, and shorten repo paths."""

        def _repo_relative_path(p: str) -> str:
            root = str(REPO_ROOT)
            if p.startswith(root):
                return os.path.relpath(p, root).replace(os.sep, '/')
            return p

        def _highlight_text(text: str) -> str:
            # Row counts with thousands separators, then bare large numbers
            text = re.sub(r'(\d{1,3}(?:,\d{3})+)', f'{Colors.BRIGHT_CYAN}\\1{Colors.RESET}', text)
            text = re.sub(r'(?<![\d,])(\d{4,})(?![\d,])', f'{Colors.BRIGHT_CYAN}\\1{Colors.RESET}', text)
            text = re.sub(r'(\d+\.?\d*%)', f'{Colors.BRIGHT_YELLOW}\\1{Colors.RESET}', text)
            for keyword, color in _KEYWORDS.items():
                pattern = re.compile(rf'\b({keyword})\b', re.IGNORECASE)
                text = pattern.sub(f'{color}\\1{Colors.RESET}', text)
            return text

        # re.split keeps the captured paths at odd indices; only the text between them is highlighted
        parts = re.split(_PATH_PATTERN, message)
        message = ''.join(
            f'{Colors.CYAN}{_repo_relative_path(part)}{Colors.RESET}' if i % 2 else _highlight_text(part)
            for i, part in enumerate(parts)
        )

        for prefix, color in STAGE_COLORS.items():
            if prefix in message:
                message = message.replace(prefix, f'{Colors.BOLD}{color}{prefix}{Colors.RESET}')

        return message


def setup_colored_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure colored logging on the root logger"""
    # Remove existing handlers to avoid duplicates
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColorFormatter())

    logging.root.addHandler(console_handler)
    logging.root.setLevel(level)

    return logging.getLogger("atus_earnings")
