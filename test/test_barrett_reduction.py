import random

import pytest
from amaranth.hdl import Period
from amaranth.sim import Simulator

from barrett_reduction import COARSE_MARGIN, BarrettReducer
from errors import WidthMismatchError
from twisted_edwards import BLS12_377_P

P61 = (1 << 61) - 1


def run_reducer(dut, values, check, run):
    async def bench(ctx):
        lat = dut.latency
        for cycle in range(len(values) + lat):
            if cycle < len(values):
                ctx.set(dut.value, values[cycle])

            await ctx.tick()

            done = cycle + 1 - lat
            if 0 <= done < len(values):
                check(values[done], ctx.get(dut.result))

    sim = Simulator(dut)
    sim.add_clock(Period(us=1))
    sim.add_testbench(bench)
    run(sim, dut)


def products(p, seed, count=60):
    rng = random.Random(seed)
    values = [0, 1, p - 1, p, (p - 1) * (p - 1), (1 << (2 * p.bit_length())) - 1]
    values += [rng.randrange(p) * rng.randrange(p) for _ in range(count)]
    values += [rng.getrandbits(2 * p.bit_length()) for _ in range(count // 4)]
    return values


@pytest.mark.parametrize("p, stages", [(8191, 1), (8191, 3), (P61, 2)])
def test_barrett_fine(p, stages, run):
    dut = BarrettReducer(p, 2 * p.bit_length(), stages, fine=True)

    def check(x, result):
        assert result == x % p, f"{x} mod {p}"

    run_reducer(dut, products(p, stages), check, run)


@pytest.mark.parametrize("p, stages", [(8191, 2), (P61, 3)])
def test_barrett_coarse(p, stages, run):
    dut = BarrettReducer(p, 2 * p.bit_length(), stages, fine=False)
    assert dut.margin == COARSE_MARGIN

    def check(x, result):
        assert result < 3 * p, f"{x}: coarse result {result} not below 3p"
        assert result % p == x % p, f"{x}: coarse result {result} not congruent"

    run_reducer(dut, products(p, stages + 10), check, run)


@pytest.mark.slow
def test_barrett_fine_bls12_377(run):
    p = BLS12_377_P
    dut = BarrettReducer(p, 2 * p.bit_length(), 3, fine=True)

    def check(x, result):
        assert result == x % p

    run_reducer(dut, products(p, 377, count=20), check, run)


def test_barrett_narrow_input(run):
    p = 8191
    dut = BarrettReducer(p, p.bit_length() + 3, 2)
    values = list(range(0, 1 << (p.bit_length() + 3), 1021))

    def check(x, result):
        assert result == x % p

    run_reducer(dut, values, check, run)


def test_barrett_latency():
    assert BarrettReducer.latency_for(3, fine=True) == 8
    assert BarrettReducer.latency_for(3, fine=False) == 5
    assert BarrettReducer(P61, 122, 2).latency == 6


def test_barrett_input_too_wide():
    with pytest.raises(WidthMismatchError):
        BarrettReducer(P61, 123, 2)
