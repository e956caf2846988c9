from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

import adder_subtractor_pipe
from errors import WidthMismatchError
from modulo_reduction import FineReducer

# One registered constant multiply each for q1 * mu and q3 * p
ESTIMATE_LATENCY = 2

# A coarse result is below 3p, which needs two bits on top of p
COARSE_MARGIN = 2


class BarrettReducer(wiring.Component):
    """Barrett reduction of a product of two n-bit values

    With mu = floor(4^n / p):

        q = ((x >> (n - 1)) * mu) >> (n + 1)
        r = x - q * p

    leaves r in [0, 3p) for any x < 4^n. r is computed modulo 2^(n + 2), so
    only the low bits of x and q * p take part in the subtraction.

    The coarse variant stops there, the fine one finishes with FineReducer.
    """

    def __init__(self, p: int, input_width: int, stages: int, fine: bool = True):
        self.p = p
        self.num_bits = p.bit_length()
        self.input_width = input_width
        self.stages = stages
        self.fine = fine

        if input_width > 2 * self.num_bits:
            raise WidthMismatchError("barrett.value", input_width, 2 * self.num_bits)

        self.mu = (1 << (2 * self.num_bits)) // p

        super().__init__(
            {
                "value": In(input_width),
                "result": Out(self.num_bits + self.margin),
            }
        )

    @staticmethod
    def latency_for(stages: int, fine: bool) -> int:
        coarse = ESTIMATE_LATENCY + adder_subtractor_pipe.latency(stages)
        return coarse + adder_subtractor_pipe.latency(stages) if fine else coarse

    @property
    def latency(self) -> int:
        return self.latency_for(self.stages, self.fine)

    @property
    def margin(self) -> int:
        return 0 if self.fine else COARSE_MARGIN

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        n = self.num_bits
        rw = n + COARSE_MARGIN

        value = Signal(2 * n)
        m.d.comb += value.eq(self.value)

        q2 = Signal(2 * n + 2)
        m.d.sync += q2.eq(value[n - 1 :] * Const(self.mu, n + 1))

        qp = Signal(rw)
        m.d.sync += qp.eq(q2[n + 1 :] * Const(self.p, n))

        low = Signal(rw)
        m.d.sync += low.eq(value[:rw])
        low_r = Signal(rw)
        m.d.sync += low_r.eq(low)

        diff = adder_subtractor_pipe.sub(m, low_r, qp, stages=self.stages, name="remainder")

        remainder = Signal(rw)
        m.d.comb += remainder.eq(diff[:rw])

        if self.fine:
            m.submodules.fine = fine = FineReducer(self.p, rw, self.stages)
            m.d.comb += [
                fine.value.eq(remainder),
                self.result.eq(fine.result),
            ]
        else:
            m.d.comb += self.result.eq(remainder)

        return m
