import random

import pytest
from amaranth import *
from amaranth.hdl import Period
from amaranth.sim import Simulator

import karatsuba_multiplier
from errors import ConfigError, WidthMismatchError
from karatsuba_multiplier import KaratsubaMultiplier, KaratsubaMultiplierPipe


def edge_cases(width):
    top = (1 << width) - 1
    half = 1 << (width // 2)
    return [(0, 0), (top, top), (top, 1), (1, top), (half, half - 1), (top, 0)]


@pytest.mark.parametrize(
    "width, depth",
    [(3, 1), (8, 1), (9, 1), (16, 2), (17, 2), (33, 3), (61, 2), (64, 3)],
)
def test_karatsuba_products(width, depth, run):
    dut = KaratsubaMultiplierPipe(width, depth)

    rng = random.Random(width * 16 + depth)
    cases = edge_cases(width) + [(rng.getrandbits(width), rng.getrandbits(width)) for _ in range(40)]

    async def bench(ctx):
        lat = dut.latency
        checked = 0
        for cycle in range(len(cases) + lat):
            if cycle < len(cases):
                a, b = cases[cycle]
                ctx.set(dut.a, a)
                ctx.set(dut.b, b)
                ctx.set(dut.valid_in, 1)
            else:
                ctx.set(dut.valid_in, 0)

            await ctx.tick()

            done = cycle + 1 - lat
            if 0 <= done < len(cases):
                a, b = cases[done]
                assert ctx.get(dut.valid_out)
                assert ctx.get(dut.product) == a * b, f"{a} * {b}"
                checked += 1
            else:
                assert not ctx.get(dut.valid_out)

        assert checked == len(cases)

    sim = Simulator(dut)
    sim.add_clock(Period(us=1))
    sim.add_testbench(bench)
    run(sim, dut)


@pytest.mark.parametrize("depth", [1, 2, 3])
def test_karatsuba_latency(depth):
    assert karatsuba_multiplier.latency(depth) == 2 * depth + 1
    assert KaratsubaMultiplier(32, depth).latency == 2 * depth + 1


def test_karatsuba_holds_steady_inputs(run):
    dut = KaratsubaMultiplierPipe(24, 2)
    a, b = 0xABCDEF, 0x123457

    async def bench(ctx):
        ctx.set(dut.a, a)
        ctx.set(dut.b, b)
        for _ in range(dut.latency):
            await ctx.tick()
        for _ in range(10):
            assert ctx.get(dut.product) == a * b
            await ctx.tick()

    sim = Simulator(dut)
    sim.add_clock(Period(us=1))
    sim.add_testbench(bench)
    run(sim, dut)


def test_karatsuba_enable_freezes_pipeline(run):
    dut = KaratsubaMultiplierPipe(16, 2)
    a, b = 0xBEEF, 0xCAFE

    async def bench(ctx):
        ctx.set(dut.a, a)
        ctx.set(dut.b, b)
        ctx.set(dut.valid_in, 1)
        await ctx.tick()
        ctx.set(dut.a, 0)
        ctx.set(dut.b, 0)
        ctx.set(dut.valid_in, 0)

        ctx.set(dut.enable, 0)
        for _ in range(7):
            await ctx.tick()
            assert not ctx.get(dut.valid_out)
        ctx.set(dut.enable, 1)

        for _ in range(dut.latency - 2):
            await ctx.tick()
            assert not ctx.get(dut.valid_out)
        await ctx.tick()
        assert ctx.get(dut.valid_out)
        assert ctx.get(dut.product) == a * b

    sim = Simulator(dut)
    sim.add_clock(Period(us=1))
    sim.add_testbench(bench)
    run(sim, dut)


def test_karatsuba_width_mismatch():
    m = Module()
    with pytest.raises(WidthMismatchError) as info:
        karatsuba_multiplier.karatsuba_multiply(m, Signal(8), Signal(9), depth=1)
    assert info.value.actual == 9
    assert info.value.expected == 8


@pytest.mark.parametrize("width, depth", [(8, 0), (0, 1)])
def test_karatsuba_bad_parameters(width, depth):
    with pytest.raises(ConfigError):
        KaratsubaMultiplier(width, depth)
