from amaranth import *

from errors import LatencyError


def delay(m: Module, value, n: int, *, name: str = "pipe"):
    """Register `value` `n` times in the sync domain and return the last stage.

    Works for plain values as well as struct views, the registers take the
    shape of `value`.
    """
    if n < 0:
        raise LatencyError(name, 0, n)

    for i in range(n):
        reg = Signal(value.shape(), name=f"{name}_{i}")
        m.d.sync += reg.eq(value)
        value = reg

    return value


def pad_latency(m: Module, value, *, latency: int, target: int, name: str = "pad"):
    """Delay a value available after `latency` cycles so it lines up with `target`."""
    if latency > target:
        raise LatencyError(name, latency, target)
    return delay(m, value, target - latency, name=name)
