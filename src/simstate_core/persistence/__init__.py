# src/simstate_core/persistence/__init__.py
from .exceptions import StreamFormatError, RankFileError, CollectiveIOError
from .xdr import StreamMode, StreamFormat, XdrStream
from .header import HeaderVariable, SystemHeader, read_header, write_header
from .layouts import (
    IOLayout,
    IOContext,
    LayoutStrategy,
    LegacyLayout,
    SerializedLayout,
    ParallelLayout,
    layout_for,
    rank_file_name,
)

__all__ = [
    # Exceptions
    "StreamFormatError",
    "RankFileError",
    "CollectiveIOError",
    # Stream encoding
    "StreamMode",
    "StreamFormat",
    "XdrStream",
    # Header
    "HeaderVariable",
    "SystemHeader",
    "read_header",
    "write_header",
    # Layouts
    "IOLayout",
    "IOContext",
    "LayoutStrategy",
    "LegacyLayout",
    "SerializedLayout",
    "ParallelLayout",
    "layout_for",
    "rank_file_name",
]
