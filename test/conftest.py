import argparse

import pytest

from config import barrett_config
from twisted_edwards import Curve

# 2^61 - 1 keeps simulations fast while still exercising odd operand widths
P61 = (1 << 61) - 1


def pytest_addoption(parser):
    parser.addoption(
        "--vcd",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="whether to produce vcd files",
    )


@pytest.fixture
def run(request):
    """Run a simulation, dumping a waveform named after the test when --vcd is given"""

    def run(sim, dut):
        if request.config.getoption("--vcd"):
            vcd_name = f"{dut.__class__.__name__}_{request.node.name}.vcd"
            with sim.write_vcd(vcd_name):
                sim.run()
        else:
            sim.run()

    return run


@pytest.fixture
def curve61():
    return Curve(P61, -1, 5)


@pytest.fixture
def config61(curve61):
    return barrett_config(curve61.p, curve61.a, curve61.d, karatsuba_depth=2, adder_stages=2, subtractor_stages=2)
