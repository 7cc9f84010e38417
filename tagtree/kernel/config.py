"""
TagTree configuration — all environment variables in one place.

Read from environment at runtime. The kernel itself never reads these
directly: callers build a FormatOptions from Settings and pass it in.
"""

from __future__ import annotations

import logging
import os

from tagtree.kernel.types import FormatOptions


class Settings:
    """Kernel settings from environment variables."""

    # Logging
    LOG_LEVEL: str = os.environ.get("TAGTREE_LOG_LEVEL", "WARNING")

    # Editing formats for Date and Time fields
    DATE_EDIT_FORMAT: str = os.environ.get("TAGTREE_DATE_EDIT_FORMAT", "MM/dd/yyyy")
    TIME_EDIT_FORMAT: str = os.environ.get("TAGTREE_TIME_EDIT_FORMAT", "HH:mm:ss")

    # Number rendering
    DECIMAL_POINT: str = os.environ.get("TAGTREE_DECIMAL_POINT", ".")
    GROUP_SEPARATOR: str = os.environ.get("TAGTREE_GROUP_SEPARATOR", ",")
    CURRENCY_SYMBOL: str = os.environ.get("TAGTREE_CURRENCY_SYMBOL", "$")

    def format_options(self) -> FormatOptions:
        return FormatOptions(
            date_edit_format=self.DATE_EDIT_FORMAT,
            time_edit_format=self.TIME_EDIT_FORMAT,
            decimal_point=self.DECIMAL_POINT,
            group_separator=self.GROUP_SEPARATOR,
            currency_symbol=self.CURRENCY_SYMBOL,
        )


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Set the level of the kernel's loggers (defaults to Settings.LOG_LEVEL)."""
    logging.getLogger("tagtree").setLevel((level or settings.LOG_LEVEL).upper())
