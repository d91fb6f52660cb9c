"""
network.py
~~~~~~~~~~

A general-purpose neural network over an arbitrary directed graph of units.

The network supports structural editing (units and weighted connections),
forward evaluation in dependency order with cycle detection, and training
by back-propagation under one of three weight-update policies:

- immediate: every change is applied as soon as it is computed
- momentum: each change also carries a fraction of the previous change
- accumulate: changes are summed and applied later by ``apply_accum()``

Typical use::

    net = Network(rng=Rand32(seed))
    net.open('xor.nw')
    net.setup_train(accumulate=False, momentum=False)
    for inputs, targets in examples:
        for unit_id, value in zip(net.input_ids(), inputs):
            net.set_input(unit_id, value)
        net.forward_pass()
        for unit_id, value in zip(net.output_ids(), targets):
            net.apply_target(unit_id, value)
        net.backward_pass(eta=0.5)
    net.end_train()
    net.save()
"""

import os
import time
import logging
from typing import BinaryIO, Iterator, List, Optional, Tuple

import numpy as np

from .codec import (
    MAX_NAME_LENGTH, FileLayout, dumps, encode_name, get_layout, loads,
    read_network
)
from .config import file_layout_name
from .errors import ErrorCode, NetworkError
from .rand import Rand32
from .unit import IODef, Unit, UnitKind

# Configure module logger
logger = logging.getLogger(__name__)


class Network:
    """
    Unit graph plus the transient buffers used to execute and train it.

    Attributes:
        units: Units in id order; a unit's id is its index in this list
        num_input: Number of input units
        num_output: Number of output units
        rng: Generator used for initial weights
        layout: File layout used by open() and save()
        sum: Weighted sum per unit (None until setup_exec)
        act_level: Activation level per unit (None until setup_exec)
        error: Error signal per unit (None until setup_exec)
        rank: Evaluation rank per unit from the last forward pass; the
            unit evaluated last has rank 0 (None until setup_exec)
    """

    def __init__(
        self,
        rng: Optional[Rand32] = None,
        layout: Optional[FileLayout] = None
    ):
        """
        Create an empty network.

        Args:
            rng: Random generator for weights; seeded from the clock if None
            layout: File layout; taken from NW_FILE_LAYOUT if None
        """
        self.rng = rng if rng is not None else Rand32(int(time.time()))
        self.layout = layout if layout is not None else get_layout(file_layout_name())

        self.units: List[Unit] = []
        self.num_input = 0
        self.num_output = 0

        self._path = ''
        self._handle: Optional[BinaryIO] = None
        # Bumped by every structural edit; training slots are tied to one value.
        self._revision = 0
        self._train_revision = -1

        self._reset_buffers()

    def _reset_buffers(self) -> None:
        self.sum: Optional[np.ndarray] = None
        self.act_level: Optional[np.ndarray] = None
        self.error: Optional[np.ndarray] = None
        self.rank: Optional[np.ndarray] = None
        self._training = False
        self._accum: Optional[List[np.ndarray]] = None
        self._momentum: Optional[List[np.ndarray]] = None

    def __enter__(self) -> 'Network':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self):
        return (f"Network(units={self.num_units}, inputs={self.num_input}, "
                f"outputs={self.num_output}, path={self._path!r})")

    @property
    def num_units(self) -> int:
        return len(self.units)

    @property
    def path(self) -> str:
        """Absolute path of the open network file, or '' if none."""
        return self._path

    @property
    def accumulating(self) -> bool:
        return self._accum is not None

    @property
    def using_momentum(self) -> bool:
        return self._momentum is not None

    def input_ids(self) -> List[int]:
        """Ids of the input units, ascending."""
        return [ix for ix, unit in enumerate(self.units)
                if unit.kind == UnitKind.INPUT]

    def output_ids(self) -> List[int]:
        """Ids of the output units, ascending."""
        return [ix for ix, unit in enumerate(self.units)
                if unit.kind == UnitKind.OUTPUT]

    def connections(self) -> Iterator[Tuple[int, int, float]]:
        """Yield ``(source, dest, weight)`` for every connection."""
        for dest, unit in enumerate(self.units):
            for source, weight in zip(unit.inputs, unit.weights):
                yield source, dest, weight

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    def open(self, path: str) -> None:
        """
        Load a network file, replacing the current network.

        The file stays open until close() or save() to a new path.

        Raises:
            NetworkError: OPEN_FAILED, READ_FAILED, BAD_FILE or OUT_OF_MEMORY
        """
        if self.units or self._handle is not None:
            self.close()

        try:
            handle = open(path, 'r+b')
        except OSError as e:
            raise NetworkError(ErrorCode.OPEN_FAILED, str(e)) from e

        try:
            units = read_network(handle, self.layout)
        except OSError as e:
            handle.close()
            logger.warning(f"Failed to read network file '{path}': {e}")
            raise NetworkError(ErrorCode.READ_FAILED, str(e)) from e
        except NetworkError as e:
            handle.close()
            logger.warning(f"Failed to read network file '{path}': {e}")
            raise

        self._handle = handle
        self._path = os.path.realpath(path)
        self.units = units
        self._revision += 1
        self._count_io_units()

        logger.info(
            f"Opened network '{self._path}': {self.num_units} units, "
            f"{self.num_input} inputs, {self.num_output} outputs"
        )

    def close(self) -> None:
        """Discard the network and release its file and buffers."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            logger.debug(f"Closed network file '{self._path}'")

        self._path = ''
        self.units = []
        self.num_input = self.num_output = 0
        self._reset_buffers()

    def save(self, path: Optional[str] = None, overwrite: bool = True) -> None:
        """
        Write the network to disk.

        Args:
            path: If None, rewrite the currently open file; otherwise write
                to ``path`` and adopt it as the open file
            overwrite: If False, refuse to replace an existing ``path``

        Raises:
            NetworkError: NO_FILE_OPEN, FILE_EXISTS, CREATE_FAILED,
                WRITE_FAILED, or BAD_PARAMETER if the network cannot be encoded
        """
        if path is None and self._handle is None:
            raise NetworkError(ErrorCode.NO_FILE_OPEN)

        # Encode first so a failure leaves the file untouched.
        try:
            data = dumps(self.units, self.layout)
        except NetworkError as e:
            logger.error(f"Error encoding network: {e}")
            raise

        if path is not None:
            if not overwrite and os.path.exists(path):
                raise NetworkError(ErrorCode.FILE_EXISTS, path)
            try:
                handle = open(path, 'w+b')
            except OSError as e:
                raise NetworkError(ErrorCode.CREATE_FAILED, str(e)) from e
        else:
            handle = self._handle

        try:
            handle.seek(0)
            handle.write(data)
            handle.truncate()
            handle.flush()
        except OSError as e:
            if path is not None:
                handle.close()
            logger.error(f"Error writing network file: {e}")
            raise NetworkError(ErrorCode.WRITE_FAILED, str(e)) from e

        if path is not None:
            if self._handle is not None:
                self._handle.close()
            self._handle = handle
            self._path = os.path.realpath(path)

        logger.info(f"Saved network '{self._path}' ({self.num_units} units)")

    def to_bytes(self) -> bytes:
        """Encode the network in the file format, without touching any file."""
        return dumps(self.units, self.layout)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        rng: Optional[Rand32] = None,
        layout: Optional[FileLayout] = None
    ) -> 'Network':
        """Build a network, not bound to any file, from encoded bytes."""
        net = cls(rng=rng, layout=layout)
        net.units = loads(data, net.layout)
        net._count_io_units()
        return net

    def _count_io_units(self) -> None:
        self.num_input = sum(1 for u in self.units if u.kind == UnitKind.INPUT)
        self.num_output = sum(1 for u in self.units if u.kind == UnitKind.OUTPUT)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _check_id(self, unit_id: int) -> None:
        if not 0 <= unit_id < len(self.units):
            raise NetworkError(
                ErrorCode.BAD_PARAMETER,
                f"unit id {unit_id} out of range"
            )

    def create_unit(
        self,
        x: int = 0,
        y: int = 0,
        kind: UnitKind = UnitKind.INTERNAL,
        binary: bool = False,
        bias: bool = False,
        sigmoid: bool = True,
        name: str = '',
        min_value: float = 0.0,
        max_value: float = 1.0
    ) -> int:
        """
        Append a unit to the network.

        Args:
            x, y: Coordinates (stored, not used for computation)
            kind: UnitKind; unknown values become INTERNAL
            binary: Use a hard threshold instead of the sigmoid
            bias: Give the unit a bias weight
            sigmoid: Output units only; False selects clamped-linear output
            name: Name of an input/output unit
            min_value, max_value: Value range of an input/output unit

        Returns:
            int: Id of the new unit

        Raises:
            NetworkError: BAD_PARAMETER for a binary linear output unit, an
                empty input/output range or an overlong name
        """
        kind = UnitKind.normalize(kind)
        if kind == UnitKind.OUTPUT and not sigmoid and binary:
            raise NetworkError(
                ErrorCode.BAD_PARAMETER,
                "a linear output unit cannot be binary"
            )

        io_def = None
        if kind != UnitKind.INTERNAL:
            if max_value == min_value:
                raise NetworkError(
                    ErrorCode.BAD_PARAMETER,
                    f"empty value range for unit '{name}'"
                )
            if len(encode_name(str(name))) > MAX_NAME_LENGTH:
                raise NetworkError(
                    ErrorCode.BAD_PARAMETER,
                    f"unit name longer than {MAX_NAME_LENGTH} bytes"
                )
            io_def = IODef(str(name), min_value, max_value)

        if kind != UnitKind.OUTPUT:
            sigmoid = True

        unit = Unit(
            x=x,
            y=y,
            kind=kind,
            binary=binary,
            bias=bias,
            sigmoid=sigmoid,
            bias_weight=self.rng.weight(),
            io=io_def
        )

        try:
            self.units.append(unit)
        except MemoryError:
            raise NetworkError(ErrorCode.OUT_OF_MEMORY) from None

        if kind == UnitKind.INPUT:
            self.num_input += 1
        elif kind == UnitKind.OUTPUT:
            self.num_output += 1

        self._revision += 1
        unit_id = len(self.units) - 1
        logger.debug(f"Created {kind.name.lower()} unit {unit_id}")
        return unit_id

    def delete_unit(self, unit_id: int) -> None:
        """
        Remove a unit and every connection that references it.

        Ids above ``unit_id`` shift down by one, in the unit list and in
        every surviving connection.

        Raises:
            NetworkError: BAD_PARAMETER if the id is out of range
        """
        self._check_id(unit_id)

        for unit in self.units:
            ix = unit.find_input(unit_id)
            if ix >= 0:
                unit.remove_input(ix)

        removed = self.units.pop(unit_id)
        if removed.kind == UnitKind.INPUT:
            self.num_input -= 1
        elif removed.kind == UnitKind.OUTPUT:
            self.num_output -= 1

        for unit in self.units:
            unit.inputs = [
                source - 1 if source > unit_id else source
                for source in unit.inputs
            ]
        self._revision += 1

        logger.debug(f"Deleted unit {unit_id}")

    def create_connection(self, source: int, dest: int) -> None:
        """
        Connect ``source`` to ``dest`` with a random weight.

        Raises:
            NetworkError: BAD_PARAMETER, SELF_CONNECTION,
                ILLEGAL_IO_CONNECTION, CONNECTION_EXISTS or OUT_OF_MEMORY
        """
        self._check_id(source)
        self._check_id(dest)
        if source == dest:
            raise NetworkError(ErrorCode.SELF_CONNECTION, f"unit {source}")
        if (self.units[source].kind == UnitKind.OUTPUT
                or self.units[dest].kind == UnitKind.INPUT):
            raise NetworkError(
                ErrorCode.ILLEGAL_IO_CONNECTION,
                f"{source} -> {dest}"
            )

        target = self.units[dest]
        ix = target.insertion_point(source)
        if ix < target.num_input and target.inputs[ix] == source:
            raise NetworkError(
                ErrorCode.CONNECTION_EXISTS,
                f"{source} -> {dest}"
            )

        weight = self.rng.weight()
        try:
            target.inputs.insert(ix, source)
        except MemoryError:
            raise NetworkError(ErrorCode.OUT_OF_MEMORY) from None
        try:
            target.weights.insert(ix, weight)
        except MemoryError:
            del target.inputs[ix]
            raise NetworkError(ErrorCode.OUT_OF_MEMORY) from None
        self._revision += 1

        logger.debug(f"Connected unit {source} -> {dest} (weight {weight:.6f})")

    def delete_connection(self, source: int, dest: int) -> None:
        """
        Remove the connection from ``source`` to ``dest``.

        Raises:
            NetworkError: BAD_PARAMETER or NOT_CONNECTED
        """
        self._check_id(source)
        self._check_id(dest)

        target = self.units[dest]
        ix = target.find_input(source)
        if ix < 0:
            raise NetworkError(ErrorCode.NOT_CONNECTED, f"{source} -> {dest}")

        target.remove_input(ix)
        self._revision += 1
        logger.debug(f"Disconnected unit {source} -> {dest}")

    def _find_connection(self, source: int, dest: int) -> int:
        self._check_id(source)
        self._check_id(dest)
        ix = self.units[dest].find_input(source)
        if ix < 0:
            raise NetworkError(ErrorCode.NOT_CONNECTED, f"{source} -> {dest}")
        return ix

    def get_weight(self, source: int, dest: int) -> float:
        """Weight of the connection from ``source`` to ``dest``."""
        return self.units[dest].weights[self._find_connection(source, dest)]

    def set_weight(self, source: int, dest: int, weight: float) -> None:
        """Overwrite the weight of an existing connection."""
        ix = self._find_connection(source, dest)
        self.units[dest].weights[ix] = float(weight)

    # ------------------------------------------------------------------
    # Execution and training setup
    # ------------------------------------------------------------------

    def setup_exec(self) -> None:
        """Allocate zeroed execution buffers sized to the current graph."""
        if not self.units:
            return

        n = len(self.units)
        try:
            self.sum = np.zeros(n, dtype=np.float64)
            self.act_level = np.zeros(n, dtype=np.float64)
            self.error = np.zeros(n, dtype=np.float64)
            self.rank = np.zeros(n, dtype=np.int64)
        except MemoryError:
            self.sum = self.act_level = self.error = self.rank = None
            raise NetworkError(ErrorCode.OUT_OF_MEMORY) from None

    def end_exec(self) -> None:
        """Release execution buffers."""
        self.sum = None
        self.act_level = None
        self.error = None
        self.rank = None

    def setup_train(self, accumulate: bool = False, momentum: bool = False) -> None:
        """
        Allocate training buffers; also sets up execution.

        Args:
            accumulate: Defer weight changes until apply_accum()
            momentum: Add a fraction of each previous change

        Raises:
            NetworkError: BAD_PARAMETER if both policies are requested
        """
        if accumulate and momentum:
            raise NetworkError(
                ErrorCode.BAD_PARAMETER,
                "accumulate and momentum are mutually exclusive"
            )
        if not self.units:
            return

        self._accum = None
        self._momentum = None
        try:
            # One slot per connection plus one for the bias weight.
            slots = None
            if accumulate or momentum:
                slots = [
                    np.zeros(unit.num_input + (1 if unit.bias else 0))
                    for unit in self.units
                ]
        except MemoryError:
            raise NetworkError(ErrorCode.OUT_OF_MEMORY) from None

        self.setup_exec()

        if accumulate:
            self._accum = slots
        elif momentum:
            self._momentum = slots
        self._training = True
        self._train_revision = self._revision

        policy = 'accumulate' if accumulate else 'momentum' if momentum else 'immediate'
        logger.debug(f"Training set up with {policy} weight updates")

    def end_train(self) -> None:
        """Release training buffers; also ends execution."""
        self._accum = None
        self._momentum = None
        self._training = False
        self.end_exec()

    def _check_exec(self) -> None:
        if self.sum is None:
            raise NetworkError(
                ErrorCode.BAD_PARAMETER,
                "execution buffers not set up"
            )
        if len(self.sum) != len(self.units):
            raise NetworkError(
                ErrorCode.BAD_PARAMETER,
                "network changed since setup; set up again"
            )

    def _check_train(self) -> None:
        if not self._training:
            raise NetworkError(ErrorCode.BAD_PARAMETER, "training not set up")
        self._check_exec()

        slots = self._accum if self._accum is not None else self._momentum
        if slots is not None:
            if self._train_revision != self._revision:
                raise NetworkError(
                    ErrorCode.BAD_PARAMETER,
                    "network changed since setup; set up again"
                )
            for unit, unit_slots in zip(self.units, slots):
                if len(unit_slots) != unit.num_input + (1 if unit.bias else 0):
                    raise NetworkError(
                        ErrorCode.BAD_PARAMETER,
                        "network changed since setup; set up again"
                    )

    # ------------------------------------------------------------------
    # Inputs, outputs and targets
    # ------------------------------------------------------------------

    def set_input(self, unit_id: int, value: float) -> None:
        """
        Apply a raw value to an input unit.

        The value is clamped to the unit's range and scaled to [0, 1].

        Raises:
            NetworkError: BAD_PARAMETER or NOT_INPUT_UNIT
        """
        self._check_id(unit_id)
        unit = self.units[unit_id]
        if unit.kind != UnitKind.INPUT:
            raise NetworkError(ErrorCode.NOT_INPUT_UNIT, f"unit {unit_id}")
        self._check_exec()

        value = unit.io.clamp(float(value))
        value = (value - unit.io.min) / (unit.io.max - unit.io.min)

        self.sum[unit_id] = value
        self.act_level[unit_id] = value

    def read_output(self, unit_id: int) -> float:
        """
        Read an output unit's activation scaled back to its raw range.

        Raises:
            NetworkError: BAD_PARAMETER or NOT_OUTPUT_UNIT
        """
        self._check_id(unit_id)
        unit = self.units[unit_id]
        if unit.kind != UnitKind.OUTPUT:
            raise NetworkError(ErrorCode.NOT_OUTPUT_UNIT, f"unit {unit_id}")
        self._check_exec()

        value = float(self.act_level[unit_id])
        if not unit.sigmoid:
            value += 0.5

        return value * (unit.io.max - unit.io.min) + unit.io.min

    def apply_target(self, unit_id: int, target: float) -> None:
        """
        Set an output unit's error from a raw target value.

        Raises:
            NetworkError: BAD_PARAMETER or NOT_OUTPUT_UNIT
        """
        self._check_id(unit_id)
        unit = self.units[unit_id]
        if unit.kind != UnitKind.OUTPUT:
            raise NetworkError(ErrorCode.NOT_OUTPUT_UNIT, f"unit {unit_id}")
        self._check_exec()

        target = unit.io.clamp(float(target))
        target = (target - unit.io.min) / (unit.io.max - unit.io.min)
        if not unit.sigmoid:
            target -= 0.5

        self.error[unit_id] = target - self.act_level[unit_id]

    # ------------------------------------------------------------------
    # Forward and backward passes
    # ------------------------------------------------------------------

    @staticmethod
    def _activate(unit: Unit, total: float) -> float:
        if unit.binary:
            return 1.0 if total > 0.0 else 0.0
        if unit.is_linear_output:
            if total > 0.5:
                return 0.5
            if total < -0.5:
                return -0.5
            return total
        with np.errstate(over='ignore'):
            return 1.0 / (1.0 + np.exp(-total))

    def forward_pass(self) -> None:
        """
        Evaluate every unit once its sources have been evaluated.

        Input units count as evaluated from the start. Each sweep over the
        remaining units evaluates those whose sources are all done, and
        records an evaluation rank counting down from ``num_units - 1``.

        Raises:
            NetworkError: RECURSIVE_CYCLE if a sweep makes no progress; the
                sum and activation buffers are zeroed first
        """
        n = len(self.units)
        if n == 0:
            return
        self._check_exec()

        total_sum = self.sum
        act_level = self.act_level
        rank = self.rank

        evaluated = [False] * n
        processed = 0

        for ix, unit in enumerate(self.units):
            if unit.kind == UnitKind.INPUT:
                evaluated[ix] = True
                processed += 1
                rank[ix] = n - processed

        while processed < n:
            progress = 0

            for ix, unit in enumerate(self.units):
                if evaluated[ix]:
                    continue
                if not all(evaluated[source] for source in unit.inputs):
                    continue

                total = unit.bias_weight if unit.bias else 0.0
                for source, weight in zip(unit.inputs, unit.weights):
                    total += act_level[source] * weight

                total_sum[ix] = total
                act_level[ix] = self._activate(unit, total)

                evaluated[ix] = True
                progress += 1
                processed += 1
                rank[ix] = n - processed

            if processed < n and progress == 0:
                total_sum.fill(0.0)
                act_level.fill(0.0)
                logger.warning(
                    f"Forward pass stopped: {n - processed} unit(s) "
                    f"form or depend on a cycle"
                )
                raise NetworkError(ErrorCode.RECURSIVE_CYCLE)

    def backward_pass(self, eta: float, momentum_coeff: float = 0.0) -> None:
        """
        Propagate output errors backwards and update weights.

        Requires a completed forward pass and apply_target() on the output
        units. Errors are accumulated by replaying units in ascending rank
        order, so every unit has received the error of all its consumers
        before passing its own error on.

        Args:
            eta: Learning rate
            momentum_coeff: Fraction of the previous change carried over
                (momentum policy only)

        Raises:
            NetworkError: BAD_PARAMETER if training is not set up
        """
        if not self.units:
            return
        self._check_train()

        error = self.error
        act_level = self.act_level.tolist()

        for ix, unit in enumerate(self.units):
            if unit.kind != UnitKind.OUTPUT:
                error[ix] = 0.0

        for ix in np.argsort(self.rank, kind='stable'):
            unit = self.units[ix]
            unit_error = error[ix]
            for source, weight in zip(unit.inputs, unit.weights):
                error[source] += unit_error * weight

        accum = self._accum
        momentum = self._momentum

        for ix, unit in enumerate(self.units):
            if unit.binary or unit.is_linear_output:
                basic = eta * float(error[ix])
            else:
                basic = eta * float(error[ix]) * (act_level[ix] * (1 - act_level[ix]))

            if unit.bias:
                slot = unit.num_input
                if momentum is not None:
                    change = basic + momentum_coeff * momentum[ix][slot]
                    unit.bias_weight += float(change)
                    momentum[ix][slot] = change
                elif accum is not None:
                    accum[ix][slot] += basic
                else:
                    unit.bias_weight += basic

            weights = unit.weights
            for jx, source in enumerate(unit.inputs):
                change = basic * act_level[source]

                if momentum is not None:
                    change += momentum_coeff * momentum[ix][jx]
                    weights[jx] += float(change)
                    momentum[ix][jx] = change
                elif accum is not None:
                    accum[ix][jx] += change
                else:
                    weights[jx] += change

    def apply_accum(self) -> None:
        """
        Fold accumulated changes into the weights and clear them.

        Raises:
            NetworkError: BAD_PARAMETER if the network changed since setup
        """
        if self._accum is None:
            return
        self._check_train()

        for unit, slots in zip(self.units, self._accum):
            for jx in range(unit.num_input):
                if slots[jx] != 0.0:
                    unit.weights[jx] += float(slots[jx])
                    slots[jx] = 0.0

            if unit.bias and slots[unit.num_input] != 0.0:
                unit.bias_weight += float(slots[unit.num_input])
                slots[unit.num_input] = 0.0
