"""Utility functions and helpers."""

from .keymap import format_keymap_help, generate_keymap_help, keymap_summary
from .logging import sanitize_command, setup_logging

__all__ = ["setup_logging", "sanitize_command", "generate_keymap_help", "format_keymap_help", "keymap_summary"]
