"""
drivers.py
~~~~~~~~~~

Line-oriented text front ends for the network engine.

- ``nw-exec``:  evaluate a network file on one set of input values
- ``nw-gen``:   generate a fully connected layered network file
- ``nw-train``: train a network file on examples read from the input

Each driver reads its description from standard input, one item per line,
and is built only on the public Network API.
"""

import sys
import math
import time
import logging
import argparse
from collections import namedtuple
from typing import Callable, Dict, Any, Iterable, List, Optional, Sequence, TextIO

from .config import configure_logging, report_interval as default_report_interval
from .errors import NetworkError
from .network import Network
from .rand import Rand32
from .unit import UnitKind

# Configure module logger
logger = logging.getLogger(__name__)

BAD_INPUT_MESSAGE = "Badly formatted input."

Example = namedtuple('Example', ['eta', 'inputs', 'targets'])


# ============================================================================
# REUSABLE OPERATIONS
# ============================================================================

def evaluate(net: Network, inputs: Sequence[float]) -> List[float]:
    """
    Set up execution, apply raw inputs and return raw outputs.

    Args:
        net: Network to evaluate
        inputs: Raw values for the input units, in id order

    Returns:
        Raw values of the output units, in id order
    """
    net.setup_exec()

    for unit_id, value in zip(net.input_ids(), inputs):
        net.set_input(unit_id, value)
    net.forward_pass()

    return [net.read_output(unit_id) for unit_id in net.output_ids()]


def run_network(path: str, inputs: Sequence[float]) -> List[float]:
    """Perform a single forward pass on a network file."""
    with Network() as net:
        net.open(path)
        return evaluate(net, inputs)


def generate_layered_network(
    path: str,
    row_counts: Sequence[int],
    rng: Rand32
) -> Network:
    """
    Create a fully connected layered network and save it.

    The first row holds input units, the last row output units and the
    rows between internal units. Every unit has a bias and a sigmoid
    activation over the range [0, 1], and every unit of a row feeds every
    unit of the next row.

    Args:
        path: File to write
        row_counts: Number of units in each row
        rng: Random generator for the initial weights

    Returns:
        The generated network, bound to ``path``

    Raises:
        ValueError: If fewer than two rows or an empty row are given
    """
    if len(row_counts) < 2:
        raise ValueError("a network needs at least an input and an output row")
    if any(count < 1 for count in row_counts):
        raise ValueError(f"every row needs at least one unit, got {list(row_counts)}")

    net = Network(rng=rng)
    last = len(row_counts) - 1
    rows: List[List[int]] = []

    for row, count in enumerate(row_counts):
        if row == 0:
            kind, name = UnitKind.INPUT, 'in'
        elif row == last:
            kind, name = UnitKind.OUTPUT, 'out'
        else:
            kind, name = UnitKind.INTERNAL, 'md'
        rows.append([
            net.create_unit(0, 0, kind, binary=False, bias=True, sigmoid=True,
                            name=name, min_value=0.0, max_value=1.0)
            for _ in range(count)
        ])

    for upper, lower in zip(rows, rows[1:]):
        for source in upper:
            for dest in lower:
                net.create_connection(source, dest)

    net.save(path)
    logger.info(f"Generated network '{path}' with rows {list(row_counts)}")
    return net


def parse_examples(
    lines: Iterable[str],
    num_input: int,
    num_output: int
) -> List[Example]:
    """
    Parse training rows of the form ``eta inputs... targets...``.

    Blank lines are skipped and extra trailing fields are ignored.

    Raises:
        ValueError: If a row has too few fields or a non-numeric field
    """
    examples = []
    needed = 1 + num_input + num_output

    for line_no, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) < needed:
            raise ValueError(
                f"{BAD_INPUT_MESSAGE} Row {line_no} has {len(fields)} "
                f"field(s), expected {needed}"
            )
        try:
            values = [float(field) for field in fields[:needed]]
        except ValueError:
            raise ValueError(
                f"{BAD_INPUT_MESSAGE} Row {line_no} is not numeric"
            ) from None

        examples.append(Example(
            eta=values[0],
            inputs=values[1:1 + num_input],
            targets=values[1 + num_input:]
        ))

    return examples


def train_network(
    net: Network,
    examples: Sequence[Example],
    iterations: int,
    rng: Rand32,
    report_interval: int = 100,
    callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    accumulate: bool = False,
    momentum: bool = False,
    momentum_coeff: float = 0.0
) -> List[float]:
    """
    Train a network with back-propagation.

    Every iteration presents all examples once, in an order shuffled by
    ``rng``. With ``accumulate`` the summed changes are applied at the end
    of each iteration. Every ``report_interval`` iterations the callback is
    invoked and, if the network is bound to a file, a checkpoint is saved.

    Args:
        net: Network to train
        examples: Training examples
        iterations: Number of passes over the examples
        rng: Random generator used for shuffling
        report_interval: Iterations between reports/checkpoints
        callback: Called with {'iteration', 'total_iterations', 'rms'}
        accumulate, momentum: Weight-update policy
        momentum_coeff: Momentum coefficient

    Returns:
        RMS output error of each iteration

    Raises:
        ValueError: If there are no examples or the network has no outputs
    """
    if not examples:
        raise ValueError("no training examples given")

    input_ids = net.input_ids()
    output_ids = net.output_ids()
    if not output_ids:
        raise ValueError("network has no output units to train")
    history: List[float] = []

    net.setup_train(accumulate=accumulate, momentum=momentum)
    try:
        for iteration in range(iterations):
            squared = 0.0

            for example in rng.shuffled(examples):
                for unit_id, value in zip(input_ids, example.inputs):
                    net.set_input(unit_id, value)
                net.forward_pass()

                for unit_id, value in zip(output_ids, example.targets):
                    net.apply_target(unit_id, value)
                    squared += float(net.error[unit_id]) ** 2

                net.backward_pass(example.eta, momentum_coeff)

            if accumulate:
                net.apply_accum()

            rms = math.sqrt(squared / (len(output_ids) * len(examples)))
            history.append(rms)

            if iteration % report_interval == report_interval - 1:
                logger.debug(f"Iteration {iteration}: RMS {rms:.6f}")
                if callback is not None:
                    callback({
                        'iteration': iteration,
                        'total_iterations': iterations,
                        'rms': rms
                    })
                if net.path:
                    net.save()
    finally:
        net.end_train()

    return history


# ============================================================================
# COMMAND-LINE ENTRY POINTS
# ============================================================================

def _seed_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--seed", type=int, default=None,
                        help="random seed (default: current time)")
    return parser


def _make_rng(seed: Optional[int]) -> Rand32:
    return Rand32(seed if seed is not None else int(time.time()))


def _next_line(stream: TextIO) -> str:
    line = stream.readline()
    if not line:
        raise ValueError(f"{BAD_INPUT_MESSAGE} Unexpected end of input")
    return line.strip()


def exec_main(
    argv: Optional[List[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None
) -> int:
    """
    Evaluate a network.

    Input: network path, then one raw value per input unit.
    Output: one raw value per output unit.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    configure_logging()
    _seed_parser("Perform a single forward pass on a network.").parse_args(argv)

    try:
        with Network() as net:
            net.open(_next_line(stdin))
            inputs = [float(_next_line(stdin)) for _ in range(net.num_input)]
            outputs = evaluate(net, inputs)
    except (NetworkError, ValueError) as e:
        logger.error(f"Execution failed: {e}")
        return 1

    for value in outputs:
        stdout.write(f"{value:f}\n")
    return 0


def gen_main(
    argv: Optional[List[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None
) -> int:
    """
    Generate a fully connected layered network.

    Input: output path, row count, then one unit count per row.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    configure_logging()
    args = _seed_parser("Generate a layered network file.").parse_args(argv)

    try:
        path = _next_line(stdin)
        num_rows = int(_next_line(stdin))
        row_counts = [int(_next_line(stdin)) for _ in range(num_rows)]
        net = generate_layered_network(path, row_counts, _make_rng(args.seed))
        net.close()
    except (NetworkError, ValueError) as e:
        logger.error(f"Generation failed: {e}")
        return 1

    stdout.write(f"Generated {path}\n")
    return 0


def train_main(
    argv: Optional[List[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None
) -> int:
    """
    Train a network.

    Input: network path, iteration count, then one example per line:
    learning rate, input values, target values. The network file is
    checkpointed at every report and saved when training ends.
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    configure_logging()
    args = _seed_parser("Train a network with back-propagation.").parse_args(argv)
    rng = _make_rng(args.seed)
    interval = default_report_interval()

    def report(data: Dict[str, Any]) -> None:
        stdout.write(f"RMS({data['iteration']}): {data['rms']:f}\n")

    try:
        path = _next_line(stdin)
        iterations = int(_next_line(stdin))

        with Network(rng=rng) as net:
            net.open(path)
            try:
                examples = parse_examples(stdin, net.num_input, net.num_output)
            except ValueError as e:
                sys.stderr.write(f"{BAD_INPUT_MESSAGE}\n")
                logger.error(str(e))
                return 1

            history = train_network(net, examples, iterations, rng,
                                    report_interval=interval, callback=report)
            if history:
                stdout.write(f"RMS: {history[-1]:f}\n")
            net.save()
    except (NetworkError, ValueError) as e:
        logger.error(f"Training failed: {e}")
        return 1
    return 0
