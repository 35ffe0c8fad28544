"""Textual plan panel.

Requires the ``tui`` extra::

    pip install 'planwright[tui]'
"""

from __future__ import annotations


def require_textual() -> None:
    """Raise a clear error if textual is not installed."""
    try:
        import textual  # noqa: F401
    except ImportError as exc:
        raise SystemExit(
            "The 'textual' package is required for pw plan.\n" "Install it with: pip install 'planwright[tui]'"
        ) from exc
