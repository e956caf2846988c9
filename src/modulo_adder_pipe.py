from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

import adder_subtractor_pipe
from adder_subtractor_pipe import Op
from errors import ConfigError


def latency(stages: int) -> int:
    return adder_subtractor_pipe.latency(stages)


class ModuloAdderPipe(wiring.Component):
    """(a + b) mod p for a, b < p

    a + b and a + b - p run through two adder pipes side by side, the second
    is taken unless it went negative.
    """

    def __init__(self, p: int, stages: int):
        if p < 3:
            raise ConfigError(f"modulus must be an odd prime, got {p}")

        self.p = p
        self.width = p.bit_length()
        self.stages = stages

        super().__init__(
            {
                "a": In(self.width),
                "b": In(self.width),
                "result": Out(self.width),
            }
        )

    @property
    def latency(self) -> int:
        return latency(self.stages)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        w = self.width + 1
        a = Signal(w)
        b = Signal(w)
        m.d.comb += [a.eq(self.a), b.eq(self.b)]

        total = adder_subtractor_pipe.add(m, a, b, stages=self.stages, name="sum")
        reduced = adder_subtractor_pipe.mixed(
            m,
            a,
            [(Op.ADD, b), (Op.SUB, Const(self.p, w))],
            stages=self.stages,
            name="sum_minus_p",
        )

        m.d.comb += self.result.eq(Mux(reduced[w], total, reduced))

        return m


class ModuloSubtractorPipe(wiring.Component):
    """(a - b) mod p for a, b < p

    a - b and a - b + p run side by side, the second is taken when the first
    went negative.
    """

    def __init__(self, p: int, stages: int):
        if p < 3:
            raise ConfigError(f"modulus must be an odd prime, got {p}")

        self.p = p
        self.width = p.bit_length()
        self.stages = stages

        super().__init__(
            {
                "a": In(self.width),
                "b": In(self.width),
                "result": Out(self.width),
            }
        )

    @property
    def latency(self) -> int:
        return latency(self.stages)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        w = self.width
        diff = adder_subtractor_pipe.sub(m, self.a, self.b, stages=self.stages, name="diff")
        wrapped = adder_subtractor_pipe.mixed(
            m,
            self.a,
            [(Op.SUB, self.b), (Op.ADD, Const(self.p, w))],
            stages=self.stages,
            name="diff_plus_p",
        )

        m.d.comb += self.result.eq(Mux(diff[w], wrapped, diff))

        return m
