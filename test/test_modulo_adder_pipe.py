import random

import pytest
from amaranth.hdl import Period
from amaranth.sim import Simulator

from errors import ConfigError
from modulo_adder_pipe import ModuloAdderPipe, ModuloSubtractorPipe

P61 = (1 << 61) - 1


def stream(dut, cases, model, run):
    async def bench(ctx):
        lat = dut.latency
        for cycle in range(len(cases) + lat):
            if cycle < len(cases):
                a, b = cases[cycle]
                ctx.set(dut.a, a)
                ctx.set(dut.b, b)

            await ctx.tick()

            done = cycle + 1 - lat
            if 0 <= done < len(cases):
                a, b = cases[done]
                assert ctx.get(dut.result) == model(a, b), f"a={a} b={b}"

    sim = Simulator(dut)
    sim.add_clock(Period(us=1))
    sim.add_testbench(bench)
    run(sim, dut)


def cases_for(p, seed):
    rng = random.Random(seed)
    edges = [(0, 0), (p - 1, p - 1), (p - 1, 1), (1, p - 1), (0, p - 1), (p - 1, 0)]
    return edges + [(rng.randrange(p), rng.randrange(p)) for _ in range(50)]


@pytest.mark.parametrize("p, stages", [(13, 1), (13, 5), (8191, 3), (P61, 2), (P61, 4)])
def test_modulo_adder(p, stages, run):
    dut = ModuloAdderPipe(p, stages)
    stream(dut, cases_for(p, stages), lambda a, b: (a + b) % p, run)


@pytest.mark.parametrize("p, stages", [(13, 1), (13, 5), (8191, 3), (P61, 2), (P61, 4)])
def test_modulo_subtractor(p, stages, run):
    dut = ModuloSubtractorPipe(p, stages)
    stream(dut, cases_for(p, stages + 100), lambda a, b: (a - b) % p, run)


def test_modulo_pipe_latency():
    assert ModuloAdderPipe(P61, 3).latency == 3
    assert ModuloSubtractorPipe(P61, 2).latency == 2


@pytest.mark.parametrize("cls", [ModuloAdderPipe, ModuloSubtractorPipe])
def test_tiny_modulus(cls):
    with pytest.raises(ConfigError):
        cls(2, 1)
