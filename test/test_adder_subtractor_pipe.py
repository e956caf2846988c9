import random

import pytest
from amaranth.hdl import Period
from amaranth.sim import Simulator

import adder_subtractor_pipe
from adder_subtractor_pipe import AdderSubtractorPipe, Op
from errors import ConfigError


def expected(width, init, ops, operands):
    total = init
    for op, x in zip(ops, operands):
        total = total + x if op is Op.ADD else total - x
    total %= 1 << (width + 1)
    return total & ((1 << width) - 1), total >> width


def stream(dut, cases, run):
    async def bench(ctx):
        lat = dut.latency
        for cycle in range(len(cases) + lat):
            if cycle < len(cases):
                init, operands = cases[cycle]
                ctx.set(dut.init, init)
                for port, x in zip(dut.operands, operands):
                    ctx.set(port, x)

            await ctx.tick()

            done = cycle + 1 - lat
            if 0 <= done < len(cases):
                init, operands = cases[done]
                result, carry = expected(dut.width, init, dut.ops, operands)
                assert ctx.get(dut.result) == result, f"{init} {dut.ops} {operands}"
                assert ctx.get(dut.carry) == carry, f"{init} {dut.ops} {operands}"

    sim = Simulator(dut)
    sim.add_clock(Period(us=1))
    sim.add_testbench(bench)
    run(sim, dut)


@pytest.mark.parametrize(
    "width, stages, ops",
    [
        (8, 1, [Op.ADD]),
        (8, 3, [Op.SUB]),
        (13, 4, [Op.ADD, Op.SUB]),
        (61, 2, [Op.SUB, Op.ADD]),
        (64, 5, [Op.ADD, Op.ADD, Op.ADD]),
        (32, 33, [Op.SUB, Op.SUB]),
    ],
)
def test_adder_subtractor_random(width, stages, ops, run):
    dut = AdderSubtractorPipe(width, stages, ops)

    rng = random.Random(width + stages)
    top = (1 << width) - 1
    cases = [(0, [0] * len(ops)), (top, [top] * len(ops)), (0, [top] * len(ops))]
    cases += [(rng.getrandbits(width), [rng.getrandbits(width) for _ in ops]) for _ in range(50)]

    stream(dut, cases, run)


def test_subtraction_sign(run):
    dut = AdderSubtractorPipe(16, 3, [Op.SUB])
    cases = [(5, [3]), (3, [5]), (0, [1]), (7, [7]), (0xFFFF, [0])]

    stream(dut, cases, run)


@pytest.mark.parametrize("stages", [1, 2, 4])
def test_latency_is_stage_count(stages):
    assert adder_subtractor_pipe.latency(stages) == stages
    assert AdderSubtractorPipe(16, stages, [Op.ADD]).latency == stages


def test_chunk_bounds_cover_width():
    for width in (1, 7, 62, 378):
        for stages in range(1, min(width, 8) + 1):
            bounds = adder_subtractor_pipe.chunk_bounds(width, stages)
            assert len(bounds) == stages
            assert bounds[0][0] == 0
            assert bounds[-1][1] == width
            for (_, hi), (lo, _) in zip(bounds, bounds[1:]):
                assert hi == lo
            sizes = [hi - lo for lo, hi in bounds]
            assert max(sizes) - min(sizes) <= 1


@pytest.mark.parametrize(
    "width, stages, ops",
    [(8, 0, [Op.ADD]), (8, 10, [Op.ADD]), (8, 2, [])],
)
def test_bad_parameters(width, stages, ops):
    with pytest.raises(ConfigError):
        AdderSubtractorPipe(width, stages, ops)
