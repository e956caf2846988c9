import enum
import logging
from dataclasses import dataclass
from typing import Callable

from amaranth.lib import wiring

import karatsuba_multiplier
from barrett_reduction import BarrettReducer
from errors import ConfigError
from twisted_edwards import bls12_377_curve

logger = logging.getLogger(__name__)


class ReduceMode(enum.Enum):
    NONE = "none"
    COARSE = "coarse"
    FINE = "fine"


@dataclass(frozen=True)
class Primitive:
    """A fixed-latency building block chosen at configuration time

    `build(width)` returns a component for inputs of the given width. For
    multipliers that is the operand width (ports a, b -> product), for
    reducers the width of the value to reduce (ports value -> result).
    `margin` is how many bits the output may carry above num_bits.
    """

    latency: int
    build: Callable[[int], wiring.Component]
    margin: int = 0


@dataclass(frozen=True)
class Config:
    multiply: Primitive
    reduce: Primitive
    coarse_reduce: Primitive
    adder_stages: int
    subtractor_stages: int
    doubler_stages: int
    p: int
    a: int
    d: int
    output_pipeline_stages: int
    arbitrated_multiplier: bool
    stage1_fine_reduction: bool = True
    reduction_log2_depth: int = 9

    def __post_init__(self):
        if self.p < 5 or self.p % 2 == 0:
            raise ConfigError(f"modulus must be an odd prime, got {self.p}")
        if self.a % self.p != self.p - 1:
            raise ConfigError("mixed addition is only implemented for a = -1")
        if self.d % self.p in (0, 1, self.p - 1):
            raise ConfigError(f"degenerate curve parameter d = {self.d}")

        for name in ("adder_stages", "subtractor_stages", "doubler_stages"):
            stages = getattr(self, name)
            if not 1 <= stages <= self.num_bits:
                raise ConfigError(f"{name} must be between 1 and {self.num_bits}, got {stages}")

        if self.output_pipeline_stages < 0:
            raise ConfigError(f"negative output pipeline depth {self.output_pipeline_stages}")
        if self.reduction_log2_depth < 1:
            raise ConfigError(f"reduction table depth must be at least 2, got 2^{self.reduction_log2_depth}")

        for name in ("multiply", "reduce", "coarse_reduce"):
            primitive = getattr(self, name)
            if primitive.latency < 0:
                raise ConfigError(f"{name} has negative latency {primitive.latency}")
        if self.reduce.margin != 0:
            raise ConfigError(f"full reduction must not leave margin bits, got {self.reduce.margin}")

    @property
    def num_bits(self) -> int:
        return self.p.bit_length()

    def multiply_latency(self, reduce: ReduceMode = ReduceMode.FINE) -> int:
        if reduce is ReduceMode.FINE:
            reduce_latency = self.reduce.latency
        elif reduce is ReduceMode.COARSE:
            reduce_latency = self.coarse_reduce.latency
        else:
            reduce_latency = 0
        return self.multiply.latency + reduce_latency

    def reduce_margin(self, reduce: ReduceMode) -> int:
        if reduce is ReduceMode.COARSE:
            return self.coarse_reduce.margin
        if reduce is ReduceMode.FINE:
            return self.reduce.margin
        return self.num_bits


def karatsuba_primitive(depth: int) -> Primitive:
    return Primitive(
        latency=karatsuba_multiplier.latency(depth),
        build=lambda width: karatsuba_multiplier.KaratsubaMultiplier(width, depth),
    )


def barrett_primitive(p: int, stages: int, fine: bool) -> Primitive:
    probe = BarrettReducer(p, 2 * p.bit_length(), stages, fine)
    return Primitive(
        latency=probe.latency,
        build=lambda width: BarrettReducer(p, width, stages, fine),
        margin=probe.margin,
    )


def barrett_config(
    p: int,
    a: int,
    d: int,
    *,
    karatsuba_depth: int = 3,
    adder_stages: int = 3,
    subtractor_stages: int = 3,
    doubler_stages: int = 3,
    output_pipeline_stages: int = 1,
    arbitrated_multiplier: bool = False,
    stage1_fine_reduction: bool = True,
    reduction_log2_depth: int = 9,
) -> Config:
    """Karatsuba multiplier followed by Barrett reduction"""
    config = Config(
        multiply=karatsuba_primitive(karatsuba_depth),
        reduce=barrett_primitive(p, subtractor_stages, fine=True),
        coarse_reduce=barrett_primitive(p, subtractor_stages, fine=False),
        adder_stages=adder_stages,
        subtractor_stages=subtractor_stages,
        doubler_stages=doubler_stages,
        p=p,
        a=a,
        d=d,
        output_pipeline_stages=output_pipeline_stages,
        arbitrated_multiplier=arbitrated_multiplier,
        stage1_fine_reduction=stage1_fine_reduction,
        reduction_log2_depth=reduction_log2_depth,
    )
    logger.debug(
        "barrett config: %d-bit modulus, multiply latency %d (fine) / %d (coarse)",
        config.num_bits,
        config.multiply_latency(ReduceMode.FINE),
        config.multiply_latency(ReduceMode.COARSE),
    )
    return config


def for_bls12_377(arbitrated_multiplier: bool = True, **kwargs) -> Config:
    curve = bls12_377_curve()
    return barrett_config(curve.p, curve.a, curve.d, arbitrated_multiplier=arbitrated_multiplier, **kwargs)
