import enum

from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from errors import ConfigError


class Op(enum.Enum):
    ADD = "add"
    SUB = "sub"


def latency(stages: int) -> int:
    return stages


def chunk_bounds(width: int, stages: int) -> list[tuple[int, int]]:
    """Split `width` bits into `stages` contiguous, nearly equal carry-chain chunks"""
    bounds = [width * i // stages for i in range(stages + 1)]
    return list(zip(bounds, bounds[1:]))


class AdderSubtractorPipe(wiring.Component):
    """Multistage pipelined ripple-carry adder/subtractor

    Computes init +/- operands[0] +/- operands[1] ... modulo 2^(width + 1), the
    top bit is returned as `carry`. For a single subtraction of values below
    2^width, `carry` is the sign of the difference.

    The width + 1 result bits are split into `stages` chunks. Stage i sums
    chunk i of every term together with the carry out of stage i - 1 and
    registers it, so each stage only holds a short carry chain and the
    result appears after exactly `stages` cycles.

    Subtractions are folded in as ~x + 1, the +1s go in as the initial carry.
    """

    def __init__(self, width: int, stages: int, ops):
        self.ops = tuple(ops)
        if stages < 1:
            raise ConfigError(f"adder/subtractor needs at least one stage, got {stages}")
        if stages > width + 1:
            raise ConfigError(f"{stages} stages is more than the {width + 1} result bits")
        if not self.ops:
            raise ConfigError("adder/subtractor needs at least one operand")

        self.width = width
        self.stages = stages

        super().__init__(
            {
                "init": In(width),
                "operands": In(width).array(len(self.ops)),
                "result": Out(width),
                "carry": Out(1),
            }
        )

    @property
    def latency(self) -> int:
        return latency(self.stages)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        total = self.width + 1
        num_terms = len(self.ops) + 1
        carry_width = (num_terms + 1).bit_length()

        terms = [Signal(total, name="term_init")]
        m.d.comb += terms[0].eq(self.init)
        for i, (op, operand) in enumerate(zip(self.ops, self.operands)):
            term = Signal(total, name=f"term_{i}")
            if op is Op.ADD:
                m.d.comb += term.eq(operand)
            else:
                m.d.comb += term.eq(~Cat(operand, Const(0, 1)))
            terms.append(term)

        carry = Const(sum(op is Op.SUB for op in self.ops), carry_width)
        done = []
        chunks = chunk_bounds(total, self.stages)

        for stage, (lo, hi) in enumerate(chunks):
            chunk_width = hi - lo

            chunk_sum = Signal(chunk_width + carry_width, name=f"sum_{stage}")
            m.d.comb += chunk_sum.eq(sum(term[: chunk_width] for term in terms) + carry)

            chunk_reg = Signal(chunk_width, name=f"chunk_{stage}")
            carry_reg = Signal(carry_width, name=f"carry_{stage}")
            m.d.sync += [
                chunk_reg.eq(chunk_sum[:chunk_width]),
                carry_reg.eq(chunk_sum[chunk_width:]),
            ]

            # Finished chunks keep moving with the pipeline
            delayed = []
            for i, chunk in enumerate(done):
                reg = Signal(len(chunk), name=f"done_{stage}_{i}")
                m.d.sync += reg.eq(chunk)
                delayed.append(reg)
            done = delayed + [chunk_reg]

            if stage + 1 < len(chunks):
                remaining = []
                for i, term in enumerate(terms):
                    reg = Signal(len(term) - chunk_width, name=f"term_{stage}_{i}")
                    m.d.sync += reg.eq(term[chunk_width:])
                    remaining.append(reg)
                terms = remaining

            carry = carry_reg

        full = Cat(*done)
        m.d.comb += [
            self.result.eq(full[: self.width]),
            self.carry.eq(full[self.width]),
        ]

        return m


def add(m: Module, a, *operands, stages: int, name: str = "add"):
    """Wire an adder pipe for a + operands... and return Cat(result, carry)."""
    return _pipe(m, a, [(Op.ADD, x) for x in operands], stages=stages, name=name)


def sub(m: Module, a, *operands, stages: int, name: str = "sub"):
    """Wire a subtractor pipe for a - operands... and return Cat(result, borrow)."""
    return _pipe(m, a, [(Op.SUB, x) for x in operands], stages=stages, name=name)


def mixed(m: Module, init, terms, *, stages: int, name: str = "mixed"):
    """Wire an adder pipe for init followed by a list of (Op, value) terms."""
    return _pipe(m, init, terms, stages=stages, name=name)


def _pipe(m, init, terms, *, stages, name):
    width = len(init)
    m.submodules[name] = pipe = AdderSubtractorPipe(width, stages, [op for op, _ in terms])
    m.d.comb += pipe.init.eq(init)
    for port, (_, value) in zip(pipe.operands, terms):
        m.d.comb += port.eq(value)
    return Cat(pipe.result, pipe.carry)
