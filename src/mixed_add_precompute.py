import logging

from amaranth import *
from amaranth.build import Platform
from amaranth.hdl import EnableInserter
from amaranth.lib import data, wiring
from amaranth.lib.wiring import In, Out

import adder_subtractor_pipe
import modulo_adder_pipe
from adder_subtractor_pipe import Op
from arbitrate import EXTRA_LATENCY, arbitrate2
from config import Config, ReduceMode
from errors import WidthMismatchError, check_width
from modulo_adder_pipe import ModuloAdderPipe, ModuloSubtractorPipe
from modulo_reduction import ModuloReducer
from pipeline import delay, pad_latency
from reduction_table import BuildMode
from twisted_edwards import ExtendedPoint, PrecomputedPoint

logger = logging.getLogger(__name__)


def multiply(m: Module, config: Config, x, y, *, latency: int, reduce: ReduceMode, name: str):
    """x * y through the configured multiplier and reducer, delivered after `latency` cycles"""
    if len(x) != len(y):
        raise WidthMismatchError(f"{name}.y", len(y), len(x))

    m.submodules[f"{name}_mult"] = mult = config.multiply.build(len(x))
    m.d.comb += [
        mult.a.eq(x),
        mult.b.eq(y),
    ]
    result = pad_latency(
        m, mult.product, latency=mult.latency, target=config.multiply.latency, name=f"{name}_product"
    )

    if reduce is not ReduceMode.NONE:
        primitive = config.reduce if reduce is ReduceMode.FINE else config.coarse_reduce
        m.submodules[f"{name}_reduce"] = reducer = primitive.build(len(result))
        m.d.comb += reducer.value.eq(result)
        result = pad_latency(
            m, reducer.result, latency=reducer.latency, target=primitive.latency, name=f"{name}_reduced"
        )

    return pad_latency(m, result, latency=config.multiply_latency(reduce), target=latency, name=f"{name}_pad")


def arbitrate_multiply(m: Module, config: Config, first, second, *, valid, latency: int, reduce: ReduceMode, name: str):
    """Two products sharing one multiplier, delivered after latency + EXTRA_LATENCY cycles"""
    (x1, y1), (x2, y2) = first, second
    check_width(f"{name}.x2", len(x2), len(x1))
    check_width(f"{name}.y2", len(y2), len(y1))
    wy = len(y1)

    def f(word):
        return multiply(m, config, word[wy:], word[:wy], latency=latency, reduce=reduce, name=name)

    return arbitrate2(m, Cat(y1, x1), Cat(y2, x2), valid=valid, f=f, name=f"{name}_arb")


def mod_add(m: Module, config: Config, a, b, *, latency: int, name: str):
    m.submodules[name] = pipe = ModuloAdderPipe(config.p, config.adder_stages)
    m.d.comb += [pipe.a.eq(a), pipe.b.eq(b)]
    return pad_latency(m, pipe.result, latency=pipe.latency, target=latency, name=f"{name}_pad")


def mod_sub(m: Module, config: Config, a, b, *, latency: int, name: str):
    m.submodules[name] = pipe = ModuloSubtractorPipe(config.p, config.subtractor_stages)
    m.d.comb += [pipe.a.eq(a), pipe.b.eq(b)]
    return pad_latency(m, pipe.result, latency=pipe.latency, target=latency, name=f"{name}_pad")


def add(m: Module, config: Config, a, b, *, latency: int, name: str):
    check_width(f"{name}.b", len(b), len(a))
    result = adder_subtractor_pipe.add(m, a, b, stages=config.adder_stages, name=name)
    return pad_latency(
        m,
        result,
        latency=adder_subtractor_pipe.latency(config.adder_stages),
        target=latency,
        name=f"{name}_pad",
    )


def sub_positive(m: Module, config: Config, a, b, *, latency: int, name: str):
    """a - b + p * 2^margin, never negative while b stays below p * 2^margin"""
    check_width(f"{name}.b", len(b), len(a))
    width = len(a)
    offset = config.p << (width - config.num_bits)
    result = adder_subtractor_pipe.mixed(
        m,
        a,
        [(Op.SUB, b), (Op.ADD, Const(offset, width))],
        stages=config.subtractor_stages,
        name=name,
    )
    return pad_latency(
        m,
        result,
        latency=adder_subtractor_pipe.latency(config.subtractor_stages),
        target=latency,
        name=f"{name}_pad",
    )


def check_layout(stage: str, actual: data.StructLayout, expected: data.StructLayout):
    for name, field in expected:
        try:
            actual_field = actual[name]
        except KeyError:
            raise WidthMismatchError(f"{stage}.{name}", 0, field.width) from None
        check_width(f"{stage}.{name}", actual_field.width, field.width)


class DatapathInput(data.StructLayout):
    def __init__(self, num_bits: int):
        super().__init__(
            {
                "p1": ExtendedPoint(num_bits),
                "p2": PrecomputedPoint(num_bits),
                "valid": 1,
            }
        )


class Stage(wiring.Component):
    """A pipeline stage whose input layout is checked against the upstream output"""

    stage_name = "stage"

    def __init__(self, config: Config, source: data.StructLayout | None = None):
        self.config = config
        self.num_bits = config.num_bits

        input_layout = self.input_layout(config)
        if source is not None:
            check_layout(self.stage_name, source, input_layout)

        super().__init__(
            {
                "inp": In(input_layout),
                "out": Out(self.output_layout(config)),
            }
        )

    @classmethod
    def input_layout(cls, config: Config) -> data.StructLayout:
        raise NotImplementedError

    @classmethod
    def output_layout(cls, config: Config) -> data.StructLayout:
        raise NotImplementedError

    @classmethod
    def margin(cls, config: Config) -> int:
        return 0


class Stage0(Stage):
    """y1 + x1 and y1 - x1, fully reduced"""

    stage_name = "stage0"

    @staticmethod
    def latency(config: Config) -> int:
        return max(modulo_adder_pipe.latency(config.adder_stages), modulo_adder_pipe.latency(config.subtractor_stages))

    @classmethod
    def input_layout(cls, config):
        return DatapathInput(config.num_bits)

    @classmethod
    def output_layout(cls, config):
        n = config.num_bits
        w = n + cls.margin(config)
        return data.StructLayout(
            {
                "p1": ExtendedPoint(n),
                "p2": PrecomputedPoint(n),
                "y1_plus_x1": unsigned(w),
                "y1_minus_x1": unsigned(w),
                "valid": 1,
            }
        )

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        config = self.config
        n = self.latency(config)
        p1 = self.inp.p1

        y1_plus_x1 = mod_add(m, config, p1.y, p1.x, latency=n, name="y1_plus_x1")
        y1_minus_x1 = mod_sub(m, config, p1.y, p1.x, latency=n, name="y1_minus_x1")

        m.d.comb += [
            self.out.y1_plus_x1.eq(y1_plus_x1),
            self.out.y1_minus_x1.eq(y1_minus_x1),
            self.out.p1.eq(delay(m, p1, n, name="p1")),
            self.out.p2.eq(delay(m, self.inp.p2, n, name="p2")),
            self.out.valid.eq(delay(m, self.inp.valid, n, name="valid")),
        ]

        return m


class Stage1(Stage):
    """c_A = (y1 - x1) * x2, c_B = (y1 + x1) * y2, c_C = t1 * t2, c_D = z1

    x2, y2 and t2 are the host-precomputed coordinates of the affine point.
    """

    stage_name = "stage1"

    @staticmethod
    def reduce_mode(config: Config) -> ReduceMode:
        return ReduceMode.FINE if config.stage1_fine_reduction else ReduceMode.COARSE

    @classmethod
    def margin(cls, config: Config) -> int:
        return config.reduce_margin(cls.reduce_mode(config))

    @classmethod
    def latency_without_arbitration(cls, config: Config) -> int:
        return config.multiply_latency(cls.reduce_mode(config))

    @classmethod
    def latency(cls, config: Config) -> int:
        arbitration = EXTRA_LATENCY if config.arbitrated_multiplier else 0
        return cls.latency_without_arbitration(config) + arbitration

    @classmethod
    def input_layout(cls, config):
        return Stage0.output_layout(config)

    @classmethod
    def output_layout(cls, config):
        w = config.num_bits + Stage0.margin(config) + cls.margin(config)
        return data.StructLayout(
            {
                "c_A": unsigned(w),
                "c_B": unsigned(w),
                "c_C": unsigned(w),
                "c_D": unsigned(config.num_bits),
                "valid": 1,
            }
        )

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        config = self.config
        inp = self.inp
        mode = self.reduce_mode(config)
        n = self.latency(config)

        # The affine coordinates go into the multiplier as they are
        w = self.num_bits + Stage0.margin(config)
        x2 = Signal(w)
        y2 = Signal(w)
        m.d.comb += [
            x2.eq(inp.p2.x),
            y2.eq(inp.p2.y),
        ]

        if config.arbitrated_multiplier:
            c_a, c_b = arbitrate_multiply(
                m,
                config,
                (inp.y1_minus_x1, x2),
                (inp.y1_plus_x1, y2),
                valid=inp.valid,
                latency=self.latency_without_arbitration(config),
                reduce=mode,
                name="c_AB",
            )
        else:
            c_a = multiply(m, config, inp.y1_minus_x1, x2, latency=n, reduce=mode, name="c_A")
            c_b = multiply(m, config, inp.y1_plus_x1, y2, latency=n, reduce=mode, name="c_B")

        c_c = multiply(m, config, inp.p1.t, inp.p2.t, latency=n, reduce=mode, name="c_C")

        m.d.comb += [
            self.out.c_A.eq(c_a),
            self.out.c_B.eq(c_b),
            self.out.c_C.eq(c_c),
            self.out.c_D.eq(delay(m, inp.p1.z, n, name="c_D")),
            self.out.valid.eq(delay(m, inp.valid, n, name="valid")),
        ]

        return m


class Stage2(Stage):
    """E = B - A, F = D - C, G = D + C, H = B + A, one more margin bit"""

    stage_name = "stage2"

    @classmethod
    def margin(cls, config: Config) -> int:
        return 1

    @staticmethod
    def latency(config: Config) -> int:
        return max(adder_subtractor_pipe.latency(config.adder_stages), adder_subtractor_pipe.latency(config.subtractor_stages))

    @staticmethod
    def input_margin(config: Config) -> int:
        return Stage0.margin(config) + Stage1.margin(config)

    @classmethod
    def input_layout(cls, config):
        return Stage1.output_layout(config)

    @classmethod
    def output_layout(cls, config):
        w = config.num_bits + cls.input_margin(config) + cls.margin(config)
        return data.StructLayout(
            {
                "c_E": unsigned(w),
                "c_F": unsigned(w),
                "c_G": unsigned(w),
                "c_H": unsigned(w),
                "valid": 1,
            }
        )

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        config = self.config
        inp = self.inp
        n = self.latency(config)
        w = self.num_bits + self.input_margin(config)

        c_a = inp.c_A
        c_b = inp.c_B
        c_c = inp.c_C
        c_d = Signal(w)
        m.d.comb += c_d.eq(inp.c_D)

        if self.input_margin(config) == 0:
            c_e = mod_sub(m, config, c_b, c_a, latency=n, name="c_E")
            c_f = mod_sub(m, config, c_d, c_c, latency=n, name="c_F")
        else:
            c_e = sub_positive(m, config, c_b, c_a, latency=n, name="c_E")
            c_f = sub_positive(m, config, c_d, c_c, latency=n, name="c_F")
        c_g = add(m, config, c_d, c_c, latency=n, name="c_G")
        c_h = add(m, config, c_b, c_a, latency=n, name="c_H")

        m.d.comb += [
            self.out.c_E.eq(c_e),
            self.out.c_F.eq(c_f),
            self.out.c_G.eq(c_g),
            self.out.c_H.eq(c_h),
            self.out.valid.eq(delay(m, inp.valid, n, name="valid")),
        ]

        return m


class Stage2Reduce(Stage):
    """Table-based reduction of E, F, G, H back to num_bits"""

    stage_name = "stage2_reduce"

    def __init__(self, config: Config, source=None, build_mode: BuildMode = BuildMode.SIMULATION):
        self.build_mode = build_mode
        margin = self.input_margin(config)
        if margin > config.reduction_log2_depth:
            raise WidthMismatchError(f"{self.stage_name}.margin", margin, config.reduction_log2_depth)
        super().__init__(config, source)

    @staticmethod
    def latency(config: Config) -> int:
        return ModuloReducer.latency_for(config.subtractor_stages)

    @staticmethod
    def input_margin(config: Config) -> int:
        return Stage2.input_margin(config) + Stage2.margin(config)

    @classmethod
    def input_layout(cls, config):
        return Stage2.output_layout(config)

    @classmethod
    def output_layout(cls, config):
        return data.StructLayout(
            {
                "c_E": unsigned(config.num_bits),
                "c_F": unsigned(config.num_bits),
                "c_G": unsigned(config.num_bits),
                "c_H": unsigned(config.num_bits),
                "valid": 1,
            }
        )

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        config = self.config

        for name in ("c_E", "c_F", "c_G", "c_H"):
            reducer = ModuloReducer(
                config.p,
                self.input_margin(config),
                config.subtractor_stages,
                log2_depth=config.reduction_log2_depth,
                build_mode=self.build_mode,
            )
            m.submodules[f"reduce_{name}"] = reducer
            m.d.comb += [
                reducer.value.eq(self.inp[name]),
                self.out[name].eq(reducer.result),
            ]

        m.d.comb += self.out.valid.eq(delay(m, self.inp.valid, self.latency(config), name="valid"))

        return m


class Stage3(Stage):
    """x3 = E * F, y3 = G * H, t3 = E * H, z3 = F * G"""

    stage_name = "stage3"

    @staticmethod
    def latency_without_arbitration(config: Config) -> int:
        return config.multiply_latency(ReduceMode.FINE)

    @classmethod
    def latency(cls, config: Config) -> int:
        arbitration = EXTRA_LATENCY if config.arbitrated_multiplier else 0
        return cls.latency_without_arbitration(config) + arbitration

    @classmethod
    def input_layout(cls, config):
        return Stage2Reduce.output_layout(config)

    @classmethod
    def output_layout(cls, config):
        n = config.num_bits
        return data.StructLayout(
            {
                "x3": unsigned(n),
                "y3": unsigned(n),
                "z3": unsigned(n),
                "t3": unsigned(n),
                "valid": 1,
            }
        )

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        config = self.config
        inp = self.inp
        n = self.latency(config)
        fine = ReduceMode.FINE

        if config.arbitrated_multiplier:
            arb = dict(
                valid=inp.valid,
                latency=self.latency_without_arbitration(config),
                reduce=fine,
            )
            x3, y3 = arbitrate_multiply(m, config, (inp.c_E, inp.c_F), (inp.c_G, inp.c_H), name="xy3", **arb)
            t3, z3 = arbitrate_multiply(m, config, (inp.c_E, inp.c_H), (inp.c_F, inp.c_G), name="tz3", **arb)
        else:
            x3 = multiply(m, config, inp.c_E, inp.c_F, latency=n, reduce=fine, name="x3")
            y3 = multiply(m, config, inp.c_G, inp.c_H, latency=n, reduce=fine, name="y3")
            t3 = multiply(m, config, inp.c_E, inp.c_H, latency=n, reduce=fine, name="t3")
            z3 = multiply(m, config, inp.c_F, inp.c_G, latency=n, reduce=fine, name="z3")

        m.d.comb += [
            self.out.x3.eq(x3),
            self.out.y3.eq(y3),
            self.out.z3.eq(z3),
            self.out.t3.eq(t3),
            self.out.valid.eq(delay(m, inp.valid, n, name="valid")),
        ]

        return m


def latency(config: Config) -> int:
    return (
        Stage0.latency(config)
        + Stage1.latency(config)
        + Stage2.latency(config)
        + Stage2Reduce.latency(config)
        + Stage3.latency(config)
        + config.output_pipeline_stages
    )


class MixedAddPrecompute(wiring.Component):
    """p3 = p1 + p2 for p1 in extended and p2 in host-precomputed affine coordinates

    Fixed latency of latency(config) cycles, accepts a new input every cycle.
    With `config.arbitrated_multiplier` (the BLS12-377 preset default) the
    cycle after every valid input must be left idle: nothing checks this, and
    back-to-back inputs come out with `valid_out` set but wrong coordinates.

    `valid_out` is `valid_in` delayed by the same latency, `enable` freezes
    the whole pipeline.
    """

    def __init__(self, config: Config, build_mode: BuildMode = BuildMode.SIMULATION):
        self.config = config
        self.build_mode = build_mode
        n = config.num_bits

        self.stage0 = Stage0(config, DatapathInput(n))
        self.stage1 = Stage1(config, self.stage0.out.shape())
        self.stage2 = Stage2(config, self.stage1.out.shape())
        self.stage2_reduce = Stage2Reduce(config, self.stage2.out.shape(), build_mode=build_mode)
        self.stage3 = Stage3(config, self.stage2_reduce.out.shape())

        logger.debug(
            "mixed add: %d-bit field, stage margins %d/%d/%d, latency %d",
            n,
            Stage0.margin(config),
            Stage1.margin(config),
            Stage2.margin(config),
            self.latency,
        )

        super().__init__(
            {
                "enable": In(1, init=1),
                "valid_in": In(1),
                "p1": In(ExtendedPoint(n)),
                "p2": In(PrecomputedPoint(n)),
                "valid_out": Out(1),
                "p3": Out(ExtendedPoint(n)),
            }
        )

    @property
    def latency(self) -> int:
        return latency(self.config)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        m.submodules.stage0 = self.stage0
        m.submodules.stage1 = self.stage1
        m.submodules.stage2 = self.stage2
        m.submodules.stage2_reduce = self.stage2_reduce
        m.submodules.stage3 = self.stage3

        m.d.comb += [
            self.stage0.inp.p1.eq(self.p1),
            self.stage0.inp.p2.eq(self.p2),
            self.stage0.inp.valid.eq(self.valid_in),
            self.stage1.inp.eq(self.stage0.out),
            self.stage2.inp.eq(self.stage1.out),
            self.stage2_reduce.inp.eq(self.stage2.out),
            self.stage3.inp.eq(self.stage2_reduce.out),
        ]

        out = delay(m, self.stage3.out, self.config.output_pipeline_stages, name="output")

        m.d.comb += [
            self.p3.x.eq(out.x3),
            self.p3.y.eq(out.y3),
            self.p3.z.eq(out.z3),
            self.p3.t.eq(out.t3),
            self.valid_out.eq(out.valid),
        ]

        return EnableInserter(self.enable)(m)
