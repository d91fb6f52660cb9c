"""
unit.py
~~~~~~~

Processing unit data model.

A unit owns its incoming connections: ``inputs`` holds source unit ids in
ascending order without duplicates, and ``weights[i]`` is the weight of the
connection from ``inputs[i]``.
"""

from bisect import bisect_left
from enum import IntEnum
from typing import List, Optional


class UnitKind(IntEnum):
    """Role of a unit in the network."""

    INPUT = 0
    INTERNAL = 1
    OUTPUT = 2

    @classmethod
    def normalize(cls, value) -> 'UnitKind':
        """Map any unknown kind value to INTERNAL."""
        try:
            return cls(value)
        except ValueError:
            return cls.INTERNAL


class IODef:
    """Name and value range of an input or output unit."""

    def __init__(self, name: str, min_value: float, max_value: float):
        self.name = name
        self.min = float(min_value)
        self.max = float(max_value)

    def clamp(self, value: float) -> float:
        if value > self.max:
            return self.max
        if value < self.min:
            return self.min
        return value

    def __eq__(self, other):
        if not isinstance(other, IODef):
            return NotImplemented
        return (self.name, self.min, self.max) == (other.name, other.min, other.max)

    def __repr__(self):
        return f"IODef(name={self.name!r}, min={self.min}, max={self.max})"


class Unit:
    """
    A processing unit and its incoming connections.

    Attributes:
        x, y: Coordinates (metadata only)
        kind: UnitKind of the unit
        binary: Hard-threshold activation
        bias: Unit has a learned bias weight
        sigmoid: Output units only; logistic if True, clamped linear if False
        bias_weight: Weight of the bias input
        io: IODef for input and output units, None for internal units
        inputs: Sorted source unit ids
        weights: Connection weights, parallel to ``inputs``
    """

    def __init__(
        self,
        x: int = 0,
        y: int = 0,
        kind: UnitKind = UnitKind.INTERNAL,
        binary: bool = False,
        bias: bool = False,
        sigmoid: bool = True,
        bias_weight: float = 0.0,
        io: Optional[IODef] = None,
        inputs: Optional[List[int]] = None,
        weights: Optional[List[float]] = None
    ):
        self.x = x
        self.y = y
        self.kind = UnitKind(kind)
        self.binary = bool(binary)
        self.bias = bool(bias)
        self.sigmoid = bool(sigmoid)
        self.bias_weight = float(bias_weight)
        self.io = io
        self.inputs: List[int] = list(inputs) if inputs else []
        self.weights: List[float] = list(weights) if weights else []

    @property
    def num_input(self) -> int:
        return len(self.inputs)

    @property
    def is_linear_output(self) -> bool:
        """True for an output unit using the clamped-linear encoding."""
        return self.kind == UnitKind.OUTPUT and not self.sigmoid

    def find_input(self, source: int) -> int:
        """
        Binary-search the connection list for ``source``.

        Returns:
            int: Index into ``inputs``, or -1 if not connected
        """
        ix = bisect_left(self.inputs, source)
        if ix < len(self.inputs) and self.inputs[ix] == source:
            return ix
        return -1

    def insertion_point(self, source: int) -> int:
        """Index where ``source`` belongs in the sorted connection list."""
        return bisect_left(self.inputs, source)

    def remove_input(self, ix: int) -> None:
        """Splice a connection out of both arrays."""
        del self.inputs[ix]
        del self.weights[ix]

    def __repr__(self):
        return (f"Unit(kind={self.kind.name}, binary={self.binary}, "
                f"bias={self.bias}, sigmoid={self.sigmoid}, "
                f"inputs={self.inputs})")
