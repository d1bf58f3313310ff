# src/simstate_core/persistence/xdr.py
"""
A minimal XDR-style stream for System files.

Binary mode follows XDR conventions: big-endian integers and IEEE doubles, strings
as a length followed by the bytes padded to a multiple of four. ASCII mode writes one
item per line; floats are written with `repr`, which round-trips exactly, so both
modes preserve every bit of the stored values.
"""
import logging
import struct
from enum import Enum
from typing import Optional

import numpy as np

from .exceptions import StreamFormatError

logger = logging.getLogger(__name__)

_BIG_ENDIAN_F8 = np.dtype('>f8')


class StreamMode(Enum):
    READ = "read"
    WRITE = "write"


class StreamFormat(Enum):
    BINARY = "binary"
    ASCII = "ascii"

    @classmethod
    def from_string(cls, name: str) -> "StreamFormat":
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(f"Unknown stream format '{name}'. Expected one of {[m.value for m in cls]}.") from None


class XdrStream:
    def __init__(self, path: str, mode: StreamMode, stream_format: StreamFormat = StreamFormat.BINARY):
        self.path = str(path)
        self.mode = mode
        self.stream_format = stream_format
        binary = stream_format is StreamFormat.BINARY
        file_mode = ('r' if mode is StreamMode.READ else 'w') + ('b' if binary else '')
        self._file = open(self.path, file_mode) if binary else open(self.path, file_mode, encoding='utf-8', newline='\n')
        logger.debug(f"Opened '{self.path}' for {mode.value} ({stream_format.value}).")

    @property
    def binary(self) -> bool:
        return self.stream_format is StreamFormat.BINARY

    def close(self):
        if not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --- Low-level ---

    def at_end(self) -> bool:
        """True when nothing is left to read."""
        self._require(StreamMode.READ)
        position = self._file.tell()
        if not self._file.read(1):
            return True
        self._file.seek(position)
        return False

    def _require(self, mode: StreamMode):
        if self.mode is not mode:
            raise ValueError(f"Stream '{self.path}' is open for {self.mode.value}, not {mode.value}.")

    def _read_bytes(self, n: int) -> bytes:
        data = self._file.read(n)
        if len(data) != n:
            raise StreamFormatError(self.path, f"unexpected end of file (wanted {n} byte(s), got {len(data)}).")
        return data

    def _read_line(self) -> str:
        line = self._file.readline()
        if not line:
            raise StreamFormatError(self.path, "unexpected end of file.")
        return line.rstrip('\n')

    def _write_line(self, text: str):
        self._file.write(text + '\n')

    def _read_int_line(self, what: str) -> int:
        line = self._read_line()
        try:
            return int(line)
        except ValueError:
            raise StreamFormatError(self.path, f"expected {what}, found '{line}'.") from None

    # --- Scalars ---

    def write_uint32(self, value: int):
        self._require(StreamMode.WRITE)
        if self.binary:
            self._file.write(struct.pack('>I', value))
        else:
            self._write_line(str(int(value)))

    def read_uint32(self) -> int:
        self._require(StreamMode.READ)
        if self.binary:
            return struct.unpack('>I', self._read_bytes(4))[0]
        return self._read_int_line("an unsigned integer")

    def write_uint64(self, value: int):
        self._require(StreamMode.WRITE)
        if self.binary:
            self._file.write(struct.pack('>Q', value))
        else:
            self._write_line(str(int(value)))

    def read_uint64(self) -> int:
        self._require(StreamMode.READ)
        if self.binary:
            return struct.unpack('>Q', self._read_bytes(8))[0]
        return self._read_int_line("an unsigned integer")

    def write_bool(self, value: bool):
        self.write_uint32(1 if value else 0)

    def read_bool(self) -> bool:
        value = self.read_uint32()
        if value not in (0, 1):
            raise StreamFormatError(self.path, f"expected a boolean, found {value}.")
        return value == 1

    def write_string(self, value: str):
        self._require(StreamMode.WRITE)
        if '\n' in value:
            raise ValueError(f"Strings written to a stream cannot contain newlines: {value!r}.")
        if self.binary:
            data = value.encode('utf-8')
            self._file.write(struct.pack('>I', len(data)) + data + b'\0' * (-len(data) % 4))
        else:
            self._write_line(value)

    def read_string(self) -> str:
        self._require(StreamMode.READ)
        if not self.binary:
            return self._read_line()
        length = struct.unpack('>I', self._read_bytes(4))[0]
        data = self._read_bytes(length + (-length % 4))
        try:
            return data[:length].decode('utf-8')
        except UnicodeDecodeError:
            raise StreamFormatError(self.path, "string is not valid UTF-8.") from None

    # --- Float data ---

    def write_float_values(self, values: np.ndarray):
        """Writes values with no length prefix; the reader must know the count."""
        self._require(StreamMode.WRITE)
        values = np.asarray(values, dtype=float)
        if self.binary:
            self._file.write(values.astype(_BIG_ENDIAN_F8).tobytes())
        else:
            for v in values:
                self._write_line(repr(float(v)))

    def read_float_values(self, count: int) -> np.ndarray:
        self._require(StreamMode.READ)
        if self.binary:
            return np.frombuffer(self._read_bytes(8 * count), dtype=_BIG_ENDIAN_F8).astype(float)
        values = np.empty(count)
        for i in range(count):
            line = self._read_line()
            try:
                values[i] = float(line)
            except ValueError:
                raise StreamFormatError(self.path, f"expected a float, found '{line}'.") from None
        return values

    def write_floats(self, values: np.ndarray):
        """Writes a length-prefixed float array."""
        values = np.asarray(values, dtype=float)
        self.write_uint64(values.size)
        self.write_float_values(values)

    def read_floats(self, expected: Optional[int] = None) -> np.ndarray:
        count = self.read_uint64()
        if expected is not None and count != expected:
            raise StreamFormatError(self.path, f"expected {expected} value(s), the file has {count}.")
        return self.read_float_values(count)
