import enum
import logging

from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.memory import Memory
from amaranth.lib.wiring import In, Out

from errors import BuildError, ConfigError

logger = logging.getLogger(__name__)

READ_LATENCY = 1


class BuildMode(enum.Enum):
    SIMULATION = "simulation"
    SYNTHESIS = "synthesis"


def multiple_for_index(p: int, num_bits: int, index: int) -> int:
    """Largest multiple of p strictly below index * 2^num_bits

    Strictly below, so an index that is itself a multiple of p still gets a
    multiple whose top bits are index - 1.
    """
    return ((index << num_bits) - 1) // p * p


def build_reduction_table(p: int, log2_depth: int) -> list[int]:
    """Low num_bits bits of the multiple of p subtracted for each top-bits index

    For index i > 0 the full multiple lies in ((i - 1) * 2^n, i * 2^n), so its
    top bits are always i - 1 and only the low n bits need to be stored. The
    hardware adds the missing 2^n back when correcting the sign of the
    difference.
    """
    if log2_depth < 1:
        raise ConfigError(f"reduction table needs at least one index bit, got {log2_depth}")

    num_bits = p.bit_length()
    mask = (1 << num_bits) - 1
    table = [0]

    for i in range(1, 1 << log2_depth):
        multiple = multiple_for_index(p, num_bits, i)
        if multiple >> num_bits != i - 1:
            raise BuildError(f"reduction table entry {i}: top bits {multiple >> num_bits}, expected {i - 1}")
        table.append(multiple & mask)

    logger.debug("built %d-entry reduction table for a %d-bit modulus", len(table), num_bits)

    return table


class ReductionTableRom(wiring.Component):
    """Read-only lookup of the reduction table with one cycle of read latency

    SIMULATION renders the table as a registered mux, SYNTHESIS as a memory
    that the toolchain can map onto block RAM. Both produce the same values
    on the same cycle.
    """

    def __init__(self, p: int, log2_depth: int, build_mode: BuildMode = BuildMode.SIMULATION):
        self.p = p
        self.num_bits = p.bit_length()
        self.log2_depth = log2_depth
        self.build_mode = build_mode
        self.table = build_reduction_table(p, log2_depth)

        super().__init__(
            {
                "index": In(log2_depth),
                "data": Out(self.num_bits),
            }
        )

    @property
    def latency(self) -> int:
        return READ_LATENCY

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        if self.build_mode is BuildMode.SIMULATION:
            entries = Array(Const(v, self.num_bits) for v in self.table)
            m.d.sync += self.data.eq(entries[self.index])
        else:
            m.submodules.memory = memory = Memory(
                shape=unsigned(self.num_bits), depth=len(self.table), init=self.table
            )
            read_port = memory.read_port()
            m.d.comb += [
                read_port.addr.eq(self.index),
                self.data.eq(read_port.data),
            ]

        return m
