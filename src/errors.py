class BuildError(Exception):
    """Raised while constructing a circuit, never while simulating one."""


class ConfigError(BuildError):
    pass


class WidthMismatchError(BuildError):
    def __init__(self, name: str, actual: int, expected: int):
        self.name = name
        self.actual = actual
        self.expected = expected
        super().__init__(f"{name}: width {actual}, expected {expected}")


class LatencyError(BuildError):
    """A value arrives later than the latency it has to be padded to."""

    def __init__(self, name: str, latency: int, target: int):
        self.name = name
        self.latency = latency
        self.target = target
        super().__init__(f"{name}: latency {latency} exceeds target {target}")


def check_width(name: str, actual: int, expected: int):
    if actual != expected:
        raise WidthMismatchError(name, actual, expected)
