# src/simstate_core/checkpoint.py
"""
User-facing save and restore of a System's state.

These facades call `System.write` / `System.read` and turn any `DiagnosableError`
raised underneath (stream format, rank-file, collective I/O or header validation
errors) into one `SystemIOError` carrying the diagnostic report, on every rank.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from .errors import DiagnosableError, SystemIOError, format_diagnostic_report
from .persistence import IOLayout, StreamFormat
from .system import System

logger = logging.getLogger(__name__)


def _io_error(e: Exception, action: str, path: Union[str, Path], system: System) -> SystemIOError:
    if isinstance(e, DiagnosableError):
        return SystemIOError(e.get_diagnostic_report())
    report = format_diagnostic_report(
        error_type=f"File Access Error ({type(e).__name__})",
        details=f"{action} failed: {e}",
        suggestion="Check that the path exists, is writable/readable, and that every rank can reach it.",
        context={'system': system.name, 'source_file': path, 'rank': system.comm.rank}
    )
    return SystemIOError(report)


def save_checkpoint(
    system: System,
    path: Union[str, Path],
    layout: Optional[Union[IOLayout, str]] = None,
    stream_format: Optional[Union[StreamFormat, str]] = None,
    write_additional_data: bool = True,
):
    """
    Collective: writes `system` to `path`.

    Raises:
        SystemIOError: If the write fails on any rank.
    """
    try:
        system.write(str(path), layout, stream_format, write_additional_data)
    except (DiagnosableError, OSError) as e:
        raise _io_error(e, f"Writing system '{system.name}'", path, system) from e
    logger.info(f"Saved checkpoint of system '{system.name}' to '{path}'.")


def load_checkpoint(
    system: System,
    path: Union[str, Path],
    layout: Optional[Union[IOLayout, str]] = None,
    stream_format: Optional[Union[StreamFormat, str]] = None,
    read_additional_data: bool = True,
):
    """
    Collective: restores the state of an initialized `system` from `path`.

    Raises:
        SystemIOError: If the read fails on any rank or the file does not match the system.
    """
    try:
        system.read(str(path), layout, stream_format, read_additional_data)
    except (DiagnosableError, OSError) as e:
        raise _io_error(e, f"Reading system '{system.name}'", path, system) from e
    logger.info(f"Restored system '{system.name}' from '{path}'.")
