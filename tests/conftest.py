import random
from itertools import product

import pytest

from amaranth.sim import Simulator


def pytest_addoption(parser):
    parser.addoption(
        "--vcds",
        action="store_true",
        help="generate Value Change Dump (vcds) from simulations",
    )
    parser.addini(
        "long_vcd_filenames",
        type="bool",
        default=False,
        help="if set, vcd files get longer, but less ambiguous, filenames"
    )


class SimulatorFixture:
    def __init__(self, mod, clks, req, cfg):
        self.mod = mod

        if cfg.getini("long_vcd_filenames"):
            self.name = req.node.name + "-" + req.module.__name__
        else:
            self.name = req.node.name

        self.sim = Simulator(self.mod)
        self.vcds = cfg.getoption("vcds")

        # Purely combinational designs have no clock domain to drive.
        if clks is not None:
            self.sim.add_clock(clks)

    def run(self, testbenches=[], processes=[]):
        for t in testbenches:
            self.sim.add_testbench(t)

        for p in processes:
            self.sim.add_process(p)

        if self.vcds:
            with self.sim.write_vcd(self.name + ".vcd", self.name + ".gtkw"):
                self.sim.run()
        else:
            self.sim.run()


@pytest.fixture
def clks():
    return None


@pytest.fixture
def sim(request, pytestconfig, mod, clks):
    return SimulatorFixture(mod, clks, request, pytestconfig)


def operand_range(width, signed):
    if signed:
        return range(-2**(width - 1), 2**(width - 1))
    else:
        return range(0, 2**width)


@pytest.fixture
def operand_values():
    """Operand tuples: all of them for small spaces, else a random sample.

    The sample always includes every combination of extreme values.
    """
    def values(widths, signs, limit=1024, samples=100):
        ranges = [operand_range(w, s) for (w, s) in zip(widths, signs)]

        total = 1
        for r in ranges:
            total *= len(r)
        if total <= limit:
            return list(product(*ranges))

        random.seed(0)
        extremes = list(product(*((r[0], r[-1]) for r in ranges)))
        return extremes + [tuple(random.choice(r) for r in ranges)
                           for _ in range(samples)]

    return values
