"""Clipboard utilities for the plan panel.

Copies text with the platform clipboard command (pbcopy on macOS,
xclip/xsel on Linux).
"""

from __future__ import annotations

import shutil
import subprocess
import sys


class ClipboardUnavailableError(Exception):
    """Raised when no clipboard command is available."""


def copy_to_clipboard(text: str) -> None:
    """Copy text to the system clipboard.

    Raises:
        ClipboardUnavailableError: If no clipboard command is found.
        subprocess.CalledProcessError: If the clipboard command fails.
    """
    cmd = find_clipboard_command()
    if cmd is None:
        raise ClipboardUnavailableError("No clipboard command found. Install xclip or xsel, or run on macOS.")
    subprocess.run(cmd, input=text.encode("utf-8"), check=True)


def find_clipboard_command() -> list[str] | None:
    """Return the clipboard command for this platform, or None if unavailable."""
    if sys.platform == "darwin":
        if shutil.which("pbcopy"):
            return ["pbcopy"]
        return None
    for name, cmd in (
        ("wl-copy", ["wl-copy"]),
        ("xclip", ["xclip", "-selection", "clipboard"]),
        ("xsel", ["xsel", "--clipboard", "--input"]),
    ):
        if shutil.which(name):
            return cmd
    return None
