from amaranth import *
from amaranth.build import Platform
from amaranth.hdl import EnableInserter
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

import karatsuba_multiplier
from errors import WidthMismatchError
from pipeline import delay

# The second request waits one cycle for the shared unit
EXTRA_LATENCY = 1


def arbitrate2(m: Module, first, second, *, valid, f, name: str = "arbitrate"):
    """Share one instance of `f` between two requests issued on the same cycle

    `first` goes through `f` on the cycle `valid` is high, `second` is held in
    a register and goes through on the next cycle. The earlier result is
    delayed by one cycle so both come back together, EXTRA_LATENCY cycles
    later than `f` on its own.

    The shared unit is busy on the cycle after every valid one, so the
    producer must not assert `valid` on two consecutive cycles.

    `f` is called once with the selected word and must return the output of
    a fixed-latency circuit it builds in `m`.
    """
    if len(first) != len(second):
        raise WidthMismatchError(f"{name}.second", len(second), len(first))

    second_r = Signal(len(second), name=f"{name}_second")
    m.d.sync += second_r.eq(second)

    selected = Signal(len(first), name=f"{name}_selected")
    m.d.comb += selected.eq(Mux(valid, first, second_r))

    result = f(selected)
    first_result = delay(m, result, EXTRA_LATENCY, name=f"{name}_first_result")

    return first_result, result


class ArbitratedMultiplierPipe(wiring.Component):
    """Two logical multipliers backed by a single Karatsuba multiplier"""

    def __init__(self, width: int, depth: int):
        self.width = width
        self.depth = depth

        super().__init__(
            {
                "enable": In(1, init=1),
                "valid_in": In(1),
                "a1": In(width),
                "b1": In(width),
                "a2": In(width),
                "b2": In(width),
                "product1": Out(2 * width),
                "product2": Out(2 * width),
                "valid_out": Out(1),
            }
        )

    @property
    def latency(self) -> int:
        return karatsuba_multiplier.latency(self.depth) + EXTRA_LATENCY

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        w = self.width

        def multiply(word):
            return karatsuba_multiplier.karatsuba_multiply(m, word[w:], word[:w], depth=self.depth)

        product1, product2 = arbitrate2(
            m,
            Cat(self.b1, self.a1),
            Cat(self.b2, self.a2),
            valid=self.valid_in,
            f=multiply,
        )

        m.d.comb += [
            self.product1.eq(product1),
            self.product2.eq(product2),
            self.valid_out.eq(delay(m, self.valid_in, self.latency, name="valid")),
        ]

        return EnableInserter(self.enable)(m)
