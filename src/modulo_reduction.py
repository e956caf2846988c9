from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

import adder_subtractor_pipe
from errors import ConfigError, WidthMismatchError
from pipeline import delay
from reduction_table import READ_LATENCY, BuildMode, ReductionTableRom


class FineReducer(wiring.Component):
    """Brings a value below 3p into [0, p) with conditional subtractions

    value - 2p and value - p are computed in parallel, the first one that did
    not underflow wins, otherwise the value was already reduced.
    """

    def __init__(self, p: int, width: int, stages: int, multiples=(2, 1)):
        self.p = p
        self.num_bits = p.bit_length()
        self.width = width
        self.stages = stages
        self.multiples = tuple(multiples)

        for k in self.multiples:
            if (k * p).bit_length() > width:
                raise WidthMismatchError(f"fine_reduce.{k}p", (k * p).bit_length(), width)

        super().__init__(
            {
                "value": In(width),
                "result": Out(self.num_bits),
            }
        )

    @property
    def latency(self) -> int:
        return adder_subtractor_pipe.latency(self.stages)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        candidates = []
        for k in self.multiples:
            res = adder_subtractor_pipe.sub(
                m, self.value, Const(k * self.p, self.width), stages=self.stages, name=f"minus_{k}p"
            )
            candidates.append((~res[self.width], res[: self.width]))

        result = delay(m, self.value, self.stages, name="unreduced")
        for ok, value in reversed(candidates):
            result = Mux(ok, value, result)

        m.d.comb += self.result.eq(result)

        return m


class ModuloReducer(wiring.Component):
    """Reduces a value with up to log2_depth margin bits into [0, p)

    Coarse step: the top `margin` bits index a table of multiples of p, that
    multiple is subtracted, leaving a value below 2^n + p <= 3p. Index 0 means
    the value already fits in n bits and bypasses the subtraction.

    Fine step: FineReducer subtracts 2p or p.

    Only the low n bits of each multiple are stored. Its top bits are known to
    be index - 1, so the true difference is 2^n + (low - entry), which is the
    n + 1 bit subtraction result with its sign bit flipped.
    """

    def __init__(
        self,
        p: int,
        margin: int,
        stages: int,
        log2_depth: int = 9,
        build_mode: BuildMode = BuildMode.SIMULATION,
    ):
        if margin > log2_depth:
            raise WidthMismatchError("reduce.margin", margin, log2_depth)
        if margin < 0:
            raise ConfigError(f"negative margin {margin}")

        self.p = p
        self.num_bits = p.bit_length()
        self.margin = margin
        self.stages = stages
        self.log2_depth = log2_depth
        self.build_mode = build_mode

        super().__init__(
            {
                "value": In(self.num_bits + margin),
                "result": Out(self.num_bits),
            }
        )

    @classmethod
    def latency_for(cls, stages: int) -> int:
        return READ_LATENCY + 2 * adder_subtractor_pipe.latency(stages)

    @property
    def latency(self) -> int:
        return self.latency_for(self.stages)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        n = self.num_bits

        m.submodules.table = table = ReductionTableRom(self.p, self.log2_depth, self.build_mode)

        index = Signal(self.log2_depth)
        m.d.comb += [
            index.eq(self.value[n:]),
            table.index.eq(index),
        ]

        low = delay(m, self.value[:n], READ_LATENCY, name="low")
        index = delay(m, index, READ_LATENCY, name="index")

        diff = adder_subtractor_pipe.sub(m, low, table.data, stages=self.stages, name="coarse")
        corrected = Cat(diff[:n], ~diff[n])

        bypass = delay(m, Cat(low, Const(0, 1)), self.stages, name="bypass")
        index_zero = delay(m, index == 0, self.stages, name="index_zero")

        coarse = Signal(n + 1)
        m.d.comb += coarse.eq(Mux(index_zero, bypass, corrected))

        m.submodules.fine = fine = FineReducer(self.p, n + 1, self.stages)
        m.d.comb += [
            fine.value.eq(coarse),
            self.result.eq(fine.result),
        ]

        return m
