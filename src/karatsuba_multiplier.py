from amaranth import *
from amaranth.build import Platform
from amaranth.hdl import EnableInserter
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from errors import ConfigError, WidthMismatchError
from pipeline import delay


def latency(depth: int) -> int:
    return 2 * depth + 1


class KaratsubaMultiplier(wiring.Component):
    """Fully pipelined Karatsuba-Ofman multiplier

    Each operand is split in a top and a bottom half of ceil(width / 2) bits:

        a * b = m0 * 2^(2h) + (m0 + m2 - (a_top - a_btm)(b_top - b_btm)) * 2^h + m2

    with m0 = a_top * b_top and m2 = a_btm * b_btm. The cross term is computed
    as |a_top - a_btm| * |b_top - b_btm| so every recursive multiplier stays
    unsigned, the sign of the product is tracked separately.

    Every level registers its inputs and its combined output, so a new pair of
    operands is accepted every cycle and the product appears after
    2 * depth + 1 cycles.
    """

    def __init__(self, width: int, depth: int):
        if depth < 1:
            raise ConfigError(f"karatsuba depth must be at least 1, got {depth}")
        if width < 1:
            raise ConfigError(f"karatsuba width must be at least 1, got {width}")

        self.width = width
        self.depth = depth
        self.half_width = (width + 1) // 2

        super().__init__(
            {
                "a": In(width),
                "b": In(width),
                "product": Out(2 * width),
            }
        )

    @property
    def latency(self) -> int:
        return latency(self.depth)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        hw = self.half_width

        a_top = Signal(hw)
        a_btm = Signal(hw)
        b_top = Signal(hw)
        b_btm = Signal(hw)

        # For odd widths the top half is one bit short and is zero-extended
        m.d.comb += [
            a_top.eq(self.a[hw:]),
            a_btm.eq(self.a[:hw]),
            b_top.eq(self.b[hw:]),
            b_btm.eq(self.b[:hw]),
        ]

        # (a_top - a_btm) * (b_top - b_btm) is negative when exactly one difference is
        cross_negative = Signal()
        m.d.comb += cross_negative.eq((a_top < a_btm) ^ (b_top < b_btm))
        cross_negative = delay(m, cross_negative, 2 * self.depth, name="cross_negative")

        a_top_r = Signal(hw)
        a_btm_r = Signal(hw)
        b_top_r = Signal(hw)
        b_btm_r = Signal(hw)
        a_diff = Signal(hw)
        b_diff = Signal(hw)

        m.d.sync += [
            a_top_r.eq(a_top),
            a_btm_r.eq(a_btm),
            b_top_r.eq(b_top),
            b_btm_r.eq(b_btm),
            a_diff.eq(Mux(a_top > a_btm, a_top - a_btm, a_btm - a_top)),
            b_diff.eq(Mux(b_top > b_btm, b_top - b_btm, b_btm - b_top)),
        ]

        m0 = Signal(2 * hw)
        m1 = Signal(2 * hw)
        m2 = Signal(2 * hw)

        if self.depth == 1:
            m.d.sync += [
                m0.eq(a_top_r * b_top_r),
                m1.eq(a_diff * b_diff),
                m2.eq(a_btm_r * b_btm_r),
            ]
        else:
            for name, x, y, out in (
                ("top", a_top_r, b_top_r, m0),
                ("cross", a_diff, b_diff, m1),
                ("btm", a_btm_r, b_btm_r, m2),
            ):
                sub = KaratsubaMultiplier(hw, self.depth - 1)
                m.submodules[name] = sub
                m.d.comb += [
                    sub.a.eq(x),
                    sub.b.eq(y),
                    out.eq(sub.product),
                ]

        # Wraps modulo 2^(2w), the true middle term is never negative
        middle = Signal(2 * self.width)
        m.d.comb += middle.eq(Mux(cross_negative, m0 + m2 + m1, m0 + m2 - m1))

        m.d.sync += self.product.eq((m0 << (2 * hw)) + (middle << hw) + m2)

        return m


def karatsuba_multiply(m: Module, a, b, *, depth: int, name: str = "karatsuba"):
    """Instantiate a multiplier for `a * b` in `m` and return its product."""
    if len(a) != len(b):
        raise WidthMismatchError(f"{name}.b", len(b), len(a))

    m.submodules[name] = mult = KaratsubaMultiplier(len(a), depth)
    m.d.comb += [
        mult.a.eq(a),
        mult.b.eq(b),
    ]
    return mult.product


class KaratsubaMultiplierPipe(wiring.Component):
    """Karatsuba multiplier with a valid strobe and a global clock enable"""

    def __init__(self, width: int, depth: int):
        self.width = width
        self.depth = depth

        super().__init__(
            {
                "enable": In(1, init=1),
                "valid_in": In(1),
                "a": In(width),
                "b": In(width),
                "product": Out(2 * width),
                "valid_out": Out(1),
            }
        )

    @property
    def latency(self) -> int:
        return latency(self.depth)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        product = karatsuba_multiply(m, self.a, self.b, depth=self.depth)

        m.d.comb += [
            self.product.eq(product),
            self.valid_out.eq(delay(m, self.valid_in, self.latency, name="valid")),
        ]

        return EnableInserter(self.enable)(m)
