"""
codec.py
~~~~~~~~

Binary persistence format for networks.

A network file is a fixed-size header followed by one record per unit:

- header: magic number 0x574E ("NW"), unit count, reserved zero bytes
- unit record: coordinates, connection count, packed flags, bias weight
- for input/output units: int16 name length (including the terminating
  NUL), the name, a NUL, float64 min, float64 max
- ``count`` source unit ids followed by ``count`` float64 weights

The byte layout reproduces the C structures the format was defined with,
so the width of the count/id fields depends on the writer's word size
(see :class:`FileLayout`). All values are little-endian.
"""

import io
import struct
import logging
from typing import BinaryIO, List

import numpy as np

from .errors import ErrorCode, NetworkError
from .unit import IODef, Unit, UnitKind

# Configure module logger
logger = logging.getLogger(__name__)

MAGIC = 0x574E
RESERVED_SIZE = 250

# Longest encoded unit name; the stored int16 length also counts the NUL.
MAX_NAME_LENGTH = 0x7FFE

_NAME_LENGTH = struct.Struct('<h')
_RANGE = struct.Struct('<dd')
_WEIGHT_DTYPE = np.dtype('<f8')

_KIND_MASK = 0x03
_BINARY_BIT = 0x04
_BIAS_BIT = 0x08
_SIGMOID_BIT = 0x10


class FileLayout:
    """
    Struct layout for one word size.

    Attributes:
        name: Layout name ('lp64' or 'ilp32')
        header: Struct for (magic, unit count)
        unit: Struct for (x, y, num_input, flags, bias weight)
        id_dtype: numpy dtype of a stored source unit id
    """

    def __init__(self, name: str, header: str, unit: str, id_dtype: str):
        self.name = name
        self.header = struct.Struct(header)
        self.unit = struct.Struct(unit)
        self.id_dtype = np.dtype(id_dtype)

    def __repr__(self):
        return f"FileLayout({self.name!r})"


# 64-bit unsigned long: 2 + 6 pad + 8 + 250 + 6 tail pad = 272 bytes.
LP64 = FileLayout(
    'lp64',
    header=f'<h6xQ{RESERVED_SIZE}x6x',
    unit='<QQQI4xd',
    id_dtype='<u8'
)

# 32-bit unsigned long: 2 + 2 pad + 4 + 250 + 2 tail pad = 260 bytes.
ILP32 = FileLayout(
    'ilp32',
    header=f'<h2xI{RESERVED_SIZE}x2x',
    unit='<IIIId',
    id_dtype='<u4'
)

LAYOUTS = {layout.name: layout for layout in (LP64, ILP32)}


def get_layout(name: str) -> FileLayout:
    """Look up a layout by name, raising BadParameter for unknown names."""
    try:
        return LAYOUTS[name.lower()]
    except KeyError:
        raise NetworkError(
            ErrorCode.BAD_PARAMETER,
            f"unknown file layout {name!r}"
        ) from None


def pack_flags(unit: Unit) -> int:
    """Pack kind and boolean flags into the stored flags word."""
    flags = int(unit.kind) & _KIND_MASK
    if unit.binary:
        flags |= _BINARY_BIT
    if unit.bias:
        flags |= _BIAS_BIT
    if unit.sigmoid:
        flags |= _SIGMOID_BIT
    return flags


def encode_name(name: str) -> bytes:
    """Encode a unit name as stored in a file, without the NUL."""
    return name.encode('utf-8', errors='surrogateescape')


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) < size:
        raise NetworkError(
            ErrorCode.READ_FAILED,
            f"expected {size} bytes, got {len(data)}"
        )
    return data


def _read_io_def(stream: BinaryIO) -> IODef:
    (length,) = _NAME_LENGTH.unpack(_read_exact(stream, _NAME_LENGTH.size))
    if length <= 0:
        raise NetworkError(ErrorCode.BAD_FILE, f"bad name length {length}")

    raw = _read_exact(stream, length)
    name = raw.split(b'\0', 1)[0].decode('utf-8', errors='surrogateescape')
    min_value, max_value = _RANGE.unpack(_read_exact(stream, _RANGE.size))
    return IODef(name, min_value, max_value)


def _read_unit(
    stream: BinaryIO,
    layout: FileLayout,
    unit_id: int,
    num_units: int
) -> Unit:
    x, y, num_input, flags, bias_weight = layout.unit.unpack(
        _read_exact(stream, layout.unit.size)
    )
    # A unit can have at most one connection from every other unit.
    if num_input >= max(num_units, 1):
        raise NetworkError(
            ErrorCode.BAD_FILE,
            f"unit {unit_id} has {num_input} connections in a {num_units}-unit network"
        )

    kind_value = flags & _KIND_MASK
    if kind_value > UnitKind.OUTPUT:
        raise NetworkError(ErrorCode.BAD_FILE, f"bad unit type {kind_value}")
    kind = UnitKind(kind_value)

    io_def = _read_io_def(stream) if kind != UnitKind.INTERNAL else None
    if kind == UnitKind.INPUT and num_input > 0:
        raise NetworkError(ErrorCode.BAD_FILE, f"input unit {unit_id} has connections")

    inputs: List[int] = []
    weights: List[float] = []
    if num_input > 0:
        id_bytes = _read_exact(stream, num_input * layout.id_dtype.itemsize)
        weight_bytes = _read_exact(stream, num_input * _WEIGHT_DTYPE.itemsize)
        inputs = np.frombuffer(id_bytes, dtype=layout.id_dtype).tolist()
        weights = np.frombuffer(weight_bytes, dtype=_WEIGHT_DTYPE).tolist()

        if inputs[-1] >= num_units:
            raise NetworkError(ErrorCode.BAD_FILE, "connection to unknown unit")
        if any(a >= b for a, b in zip(inputs, inputs[1:])):
            raise NetworkError(
                ErrorCode.BAD_FILE,
                f"connections of unit {unit_id} are unsorted or duplicated"
            )
        if unit_id in inputs:
            raise NetworkError(ErrorCode.BAD_FILE, f"unit {unit_id} feeds itself")

    return Unit(
        x=x,
        y=y,
        kind=kind,
        binary=bool(flags & _BINARY_BIT),
        bias=bool(flags & _BIAS_BIT),
        sigmoid=bool(flags & _SIGMOID_BIT),
        bias_weight=bias_weight,
        io=io_def,
        inputs=inputs,
        weights=weights
    )


def read_network(stream: BinaryIO, layout: FileLayout = LP64) -> List[Unit]:
    """
    Decode a unit list from a binary stream.

    Decoding is all-or-nothing: units are only returned once every record
    has been read, so a failure leaves no partially built graph behind.

    Args:
        stream: Readable binary stream positioned at the header
        layout: Word-size layout the file was written with

    Returns:
        List of decoded units

    Raises:
        NetworkError: READ_FAILED on a short read, BAD_FILE on a bad magic
            number or corrupt record, OUT_OF_MEMORY if allocation fails
    """
    magic, num_units = layout.header.unpack(
        _read_exact(stream, layout.header.size)
    )
    if magic != MAGIC:
        raise NetworkError(ErrorCode.BAD_FILE, f"bad magic number {magic:#06x}")

    units: List[Unit] = []
    try:
        for unit_id in range(num_units):
            units.append(_read_unit(stream, layout, unit_id, num_units))
    except MemoryError:
        raise NetworkError(ErrorCode.OUT_OF_MEMORY) from None

    for dest, unit in enumerate(units):
        for source in unit.inputs:
            if units[source].kind == UnitKind.OUTPUT:
                raise NetworkError(
                    ErrorCode.BAD_FILE,
                    f"output unit {source} feeds unit {dest}"
                )

    return units


def _write_unit(stream: BinaryIO, unit: Unit, layout: FileLayout) -> None:
    stream.write(layout.unit.pack(
        unit.x, unit.y, unit.num_input, pack_flags(unit), unit.bias_weight
    ))

    if unit.kind != UnitKind.INTERNAL:
        name = encode_name(unit.io.name)
        if len(name) > MAX_NAME_LENGTH:
            raise NetworkError(ErrorCode.BAD_PARAMETER, "unit name too long")
        stream.write(_NAME_LENGTH.pack(len(name) + 1))
        stream.write(name + b'\0')
        stream.write(_RANGE.pack(unit.io.min, unit.io.max))

    if unit.num_input > 0:
        stream.write(np.asarray(unit.inputs, dtype=layout.id_dtype).tobytes())
        stream.write(np.asarray(unit.weights, dtype=_WEIGHT_DTYPE).tobytes())


def write_network(
    stream: BinaryIO,
    units: List[Unit],
    layout: FileLayout = LP64
) -> None:
    """
    Encode a unit list onto a binary stream.

    Raises:
        NetworkError: BAD_PARAMETER if a value does not fit the layout
        OSError: If the underlying stream fails
    """
    try:
        stream.write(layout.header.pack(MAGIC, len(units)))
        for unit in units:
            _write_unit(stream, unit, layout)
    except (struct.error, OverflowError) as e:
        raise NetworkError(ErrorCode.BAD_PARAMETER, str(e)) from e


def dumps(units: List[Unit], layout: FileLayout = LP64) -> bytes:
    """Encode a unit list to bytes."""
    buffer = io.BytesIO()
    write_network(buffer, units, layout)
    return buffer.getvalue()


def loads(data: bytes, layout: FileLayout = LP64) -> List[Unit]:
    """Decode a unit list from bytes."""
    return read_network(io.BytesIO(data), layout)
