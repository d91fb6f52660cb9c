"""
test_drivers.py
~~~~~~~~~~~~~~~

Tests for the text drivers and the operations they are built on.
"""

import io
import os

import pytest

from nwengine import Network, Rand32, UnitKind
from nwengine.drivers import (
    BAD_INPUT_MESSAGE,
    Example,
    evaluate,
    exec_main,
    gen_main,
    generate_layered_network,
    parse_examples,
    run_network,
    train_main,
    train_network
)

OR_ROWS = [
    "1.0 0 0 0",
    "1.0 0 1 1",
    "1.0 1 0 1",
    "1.0 1 1 1",
]


@pytest.fixture
def or_examples():
    return parse_examples(OR_ROWS, 2, 1)


@pytest.fixture
def net_path(temp_dir):
    """A generated 2-3-1 network file."""
    path = os.path.join(temp_dir, 'or.nw')
    generate_layered_network(path, [2, 3, 1], Rand32(5)).close()
    return path


@pytest.mark.unit
class TestParseExamples:
    """Test parsing of training rows."""

    def test_parse(self):
        examples = parse_examples(["0.5 1 2 3", "", "  0.25 4 5 6 7  "], 2, 1)
        assert examples == [
            Example(0.5, [1.0, 2.0], [3.0]),
            Example(0.25, [4.0, 5.0], [6.0]),
        ]

    def test_short_row(self):
        with pytest.raises(ValueError, match=BAD_INPUT_MESSAGE):
            parse_examples(["0.5 1 2 3", "0.5 1 2"], 2, 1)

    def test_non_numeric(self):
        with pytest.raises(ValueError, match=BAD_INPUT_MESSAGE):
            parse_examples(["0.5 one 2 3"], 2, 1)


@pytest.mark.integration
class TestGenerate:
    """Test layered network generation."""

    def test_structure(self, temp_dir):
        path = os.path.join(temp_dir, 'gen.nw')
        net = generate_layered_network(path, [2, 3, 1], Rand32(1))

        assert net.path == os.path.realpath(path)
        assert net.input_ids() == [0, 1]
        assert net.output_ids() == [5]
        assert len(list(net.connections())) == 2 * 3 + 3 * 1
        assert all(unit.bias and unit.sigmoid for unit in net.units)
        assert net.units[0].io.name == 'in'
        assert net.units[2].io is None
        assert net.units[5].io.name == 'out'
        assert (net.units[5].io.min, net.units[5].io.max) == (0.0, 1.0)
        net.close()

    def test_same_seed_same_file(self, temp_dir):
        paths = [os.path.join(temp_dir, f'{name}.nw') for name in 'ab']
        for path in paths:
            generate_layered_network(path, [3, 2, 2], Rand32(42)).close()
        contents = []
        for path in paths:
            with open(path, 'rb') as f:
                contents.append(f.read())
        assert contents[0] == contents[1]

    @pytest.mark.parametrize('rows', [[3], [], [2, 0, 1]])
    def test_bad_rows(self, temp_dir, rows):
        with pytest.raises(ValueError):
            generate_layered_network(os.path.join(temp_dir, 'x.nw'), rows, Rand32(1))

    def test_gen_main(self, temp_dir):
        path = os.path.join(temp_dir, 'cli.nw')
        stdin = io.StringIO(f"{path}\n3\n2\n2\n1\n")
        stdout = io.StringIO()

        assert gen_main(['--seed', '7'], stdin, stdout) == 0

        with Network(rng=Rand32(1)) as net:
            net.open(path)
            assert net.num_units == 5
            assert net.num_input == 2
            assert net.num_output == 1

    def test_gen_main_bad_count(self, temp_dir):
        stdin = io.StringIO(f"{os.path.join(temp_dir, 'x.nw')}\ntwo\n")
        assert gen_main([], stdin, io.StringIO()) == 1


@pytest.mark.integration
class TestExecute:
    """Test single forward passes over network files."""

    def test_run_network(self, net_path):
        outputs = run_network(net_path, [1.0, 0.0])
        assert len(outputs) == 1
        assert 0.0 < outputs[0] < 1.0

    def test_evaluate_matches_manual_pass(self, net_path):
        with Network(rng=Rand32(1)) as net:
            net.open(net_path)
            expected = evaluate(net, [0.3, 0.6])

            net.setup_exec()
            net.set_input(0, 0.3)
            net.set_input(1, 0.6)
            net.forward_pass()
            assert net.read_output(5) == expected[0]

    def test_exec_main(self, net_path):
        stdin = io.StringIO(f"{net_path}\n1\n0\n")
        stdout = io.StringIO()

        assert exec_main([], stdin, stdout) == 0

        lines = stdout.getvalue().splitlines()
        assert len(lines) == 1
        assert float(lines[0]) == pytest.approx(run_network(net_path, [1.0, 0.0])[0],
                                                abs=1e-6)

    def test_exec_main_missing_file(self, temp_dir):
        stdin = io.StringIO(f"{os.path.join(temp_dir, 'absent.nw')}\n")
        assert exec_main([], stdin, io.StringIO()) == 1

    def test_exec_main_missing_input(self, net_path):
        stdin = io.StringIO(f"{net_path}\n1\n")
        assert exec_main([], stdin, io.StringIO()) == 1


@pytest.mark.integration
class TestTrain:
    """Test the training loop and the training driver."""

    @pytest.mark.parametrize('policy', [
        {},
        {'momentum': True, 'momentum_coeff': 0.5},
        {'accumulate': True},
    ])
    def test_error_decreases(self, net_path, or_examples, policy):
        with Network(rng=Rand32(1)) as net:
            net.open(net_path)
            history = train_network(net, or_examples, 300, Rand32(3),
                                    report_interval=1000, **policy)

        assert len(history) == 300
        assert history[99] < history[0]
        assert history[-1] < history[0]

    def test_deterministic(self, net_path, or_examples):
        histories = []
        for _ in range(2):
            with Network(rng=Rand32(1)) as net:
                net.open(net_path)
                histories.append(train_network(net, or_examples, 20, Rand32(9),
                                               report_interval=1000))
        assert histories[0] == histories[1]

    def test_reports_and_checkpoints(self, net_path, or_examples):
        with open(net_path, 'rb') as f:
            before = f.read()
        reports = []

        with Network(rng=Rand32(1)) as net:
            net.open(net_path)
            history = train_network(net, or_examples, 12, Rand32(3),
                                    report_interval=5, callback=reports.append)
            assert net.sum is None

        assert [r['iteration'] for r in reports] == [4, 9]
        assert all(r['total_iterations'] == 12 for r in reports)
        assert reports[1]['rms'] == history[9]
        with open(net_path, 'rb') as f:
            assert f.read() != before

    def test_no_examples(self, net_path):
        with Network(rng=Rand32(1)) as net:
            net.open(net_path)
            with pytest.raises(ValueError):
                train_network(net, [], 10, Rand32(1))

    def test_no_output_units(self, empty_network):
        net = empty_network
        net.create_unit(kind=UnitKind.INPUT, name='in')
        net.create_unit(kind=UnitKind.INTERNAL)
        net.create_connection(0, 1)
        with pytest.raises(ValueError, match="no output units"):
            train_network(net, [Example(0.5, [1.0], [])], 1, Rand32(2))
        assert net.sum is None

    def test_train_main(self, net_path, monkeypatch):
        monkeypatch.setenv('NW_REPORT_INTERVAL', '5')
        stdin = io.StringIO(f"{net_path}\n20\n" + "\n".join(OR_ROWS) + "\n")
        stdout = io.StringIO()

        assert train_main(['--seed', '11'], stdin, stdout) == 0

        lines = stdout.getvalue().splitlines()
        assert [line.split(':')[0] for line in lines] == [
            'RMS(4)', 'RMS(9)', 'RMS(14)', 'RMS(19)', 'RMS'
        ]
        assert all(float(line.split(':')[1]) >= 0.0 for line in lines)

    def test_train_main_saves_result(self, net_path):
        stdin = io.StringIO(f"{net_path}\n3\n" + "\n".join(OR_ROWS) + "\n")
        with Network(rng=Rand32(1)) as net:
            net.open(net_path)
            before = net.to_bytes()

        assert train_main(['--seed', '1'], stdin, io.StringIO()) == 0

        with Network(rng=Rand32(1)) as net:
            net.open(net_path)
            assert net.to_bytes() != before
            assert [u.kind for u in net.units].count(UnitKind.INPUT) == 2

    def test_train_main_bad_row(self, net_path, capsys):
        stdin = io.StringIO(f"{net_path}\n5\n1.0 0 0 0\n1.0 0 1\n")
        stdout = io.StringIO()

        assert train_main([], stdin, stdout) == 1

        assert BAD_INPUT_MESSAGE in capsys.readouterr().err
        assert stdout.getvalue() == ''
