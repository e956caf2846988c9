import random
from dataclasses import dataclass

from amaranth import *
from amaranth.lib import data

from errors import ConfigError

BLS12_377_P = 0x01AE3A4617C510EAC63B05C06CA1493B1A22D9F300F5138F1EF3622FBA094800170B5D44300000008508C00000000001


class ExtendedPoint(data.StructLayout):
    """Extended twisted-Edwards coordinates (X : Y : Z : T) with T = XY/Z"""

    def __init__(self, num_bits: int):
        super().__init__(
            {
                "x": unsigned(num_bits),
                "y": unsigned(num_bits),
                "z": unsigned(num_bits),
                "t": unsigned(num_bits),
            }
        )


class PrecomputedPoint(data.StructLayout):
    """Affine point in host-precomputed form ((y - x) / 2, (y + x) / 2, d * x * y)"""

    def __init__(self, num_bits: int):
        super().__init__(
            {
                "x": unsigned(num_bits),
                "y": unsigned(num_bits),
                "t": unsigned(num_bits),
            }
        )


@dataclass(frozen=True)
class Affine:
    x: int
    y: int


@dataclass(frozen=True)
class Extended:
    x: int
    y: int
    z: int
    t: int

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z, "t": self.t}

    @classmethod
    def from_struct(cls, value):
        return cls(value["x"], value["y"], value["z"], value["t"])


@dataclass(frozen=True)
class Precomputed:
    x: int
    y: int
    t: int

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "t": self.t}


def is_square(n: int, p: int) -> bool:
    n %= p
    return n == 0 or pow(n, (p - 1) // 2, p) == 1


def sqrt_mod(n: int, p: int) -> int | None:
    """Square root modulo an odd prime (Tonelli-Shanks), None for non-residues"""
    n %= p
    if n == 0:
        return 0
    if not is_square(n, p):
        return None
    if p % 4 == 3:
        return pow(n, (p + 1) // 4, p)

    q, s = p - 1, 0
    while q % 2 == 0:
        q //= 2
        s += 1

    z = 2
    while is_square(z, p):
        z += 1

    m = s
    c = pow(z, q, p)
    t = pow(n, q, p)
    r = pow(n, (q + 1) // 2, p)

    while t != 1:
        i, t2 = 0, t
        while t2 != 1:
            t2 = t2 * t2 % p
            i += 1
        b = pow(c, 1 << (m - i - 1), p)
        m = i
        c = b * b % p
        t = t * c % p
        r = r * b % p

    return r


class Curve:
    """Software model of a twisted-Edwards curve a*x^2 + y^2 = 1 + d*x^2*y^2 over F_p"""

    def __init__(self, p: int, a: int, d: int):
        self.p = p
        self.a = a % p
        self.d = d % p

    def inv(self, x: int) -> int:
        return pow(x, -1, self.p)

    @property
    def identity(self) -> Affine:
        return Affine(0, 1)

    def is_on_curve(self, pt: Affine) -> bool:
        p = self.p
        x2 = pt.x * pt.x % p
        y2 = pt.y * pt.y % p
        return (self.a * x2 + y2) % p == (1 + self.d * x2 * y2) % p

    def neg(self, pt: Affine) -> Affine:
        return Affine(-pt.x % self.p, pt.y)

    def add(self, p1: Affine, p2: Affine) -> Affine:
        p = self.p
        xx = p1.x * p2.x % p
        yy = p1.y * p2.y % p
        dxy = self.d * xx * yy % p
        x3 = (p1.x * p2.y + p1.y * p2.x) * self.inv(1 + dxy) % p
        y3 = (yy - self.a * xx) * self.inv(1 - dxy) % p
        return Affine(x3, y3)

    def to_extended(self, pt: Affine, z: int = 1) -> Extended:
        p = self.p
        return Extended(pt.x * z % p, pt.y * z % p, z % p, pt.x * pt.y % p * z % p)

    def to_affine(self, pt: Extended) -> Affine:
        z_inv = self.inv(pt.z)
        return Affine(pt.x * z_inv % self.p, pt.y * z_inv % self.p)

    def is_consistent(self, pt: Extended) -> bool:
        """T * Z == X * Y, the extended-coordinate invariant"""
        return pt.t * pt.z % self.p == pt.x * pt.y % self.p

    def precompute(self, pt: Affine) -> Precomputed:
        p = self.p
        half = self.inv(2)
        return Precomputed(
            (pt.y - pt.x) * half % p,
            (pt.y + pt.x) * half % p,
            self.d * pt.x * pt.y % p,
        )

    def mixed_add_precompute(self, p1: Extended, p2: Precomputed) -> Extended:
        """Extended + host-precomputed affine, exactly as the datapath computes it

        Only valid for a = -1. Every intermediate is half of the textbook
        formula, so the result is the textbook one scaled by 1/4.
        """
        p = self.p
        c_a = (p1.y - p1.x) * p2.x % p
        c_b = (p1.y + p1.x) * p2.y % p
        c_c = p1.t * p2.t % p
        c_d = p1.z % p
        e = (c_b - c_a) % p
        f = (c_d - c_c) % p
        g = (c_d + c_c) % p
        h = (c_b + c_a) % p
        return Extended(e * f % p, g * h % p, f * g % p, e * h % p)

    def random_point(self, rng: random.Random) -> Affine:
        p = self.p
        while True:
            x = rng.randrange(1, p)
            x2 = x * x % p
            den = (1 - self.d * x2) % p
            if den == 0:
                continue
            y = sqrt_mod((1 - self.a * x2) * self.inv(den), p)
            if y is not None:
                return Affine(x, y)

    def random_extended(self, rng: random.Random, pt: Affine | None = None) -> Extended:
        if pt is None:
            pt = self.random_point(rng)
        return self.to_extended(pt, rng.randrange(1, self.p))


def bls12_377_curve() -> Curve:
    """a = -1 twisted-Edwards form of BLS12-377 (short Weierstrass y^2 = x^3 + 1)

    Weierstrass -> Montgomery through a root alpha of x^3 + 1 and
    s = 1 / sqrt(3 * alpha^2), giving A = 3 * alpha * s and B = s. Montgomery ->
    twisted Edwards gives a = (A + 2) / B, d = (A - 2) / B, and rescaling x by
    sqrt(-a) turns that into a' = -1, d' = -d / a.
    """
    p = BLS12_377_P
    curve = Curve(p, -1, 1)

    omega = next(w for w in (pow(g, (p - 1) // 3, p) for g in range(2, 64)) if w != 1)
    roots = [p - 1, (-omega) % p, (-omega * omega) % p]

    for alpha in roots:
        root = sqrt_mod(3 * alpha * alpha, p)
        if root is None:
            continue
        for sign in (1, -1):
            s = curve.inv(sign * root % p)
            big_a = 3 * alpha * s % p
            a_te = (big_a + 2) * curve.inv(s) % p
            d_te = (big_a - 2) * curve.inv(s) % p
            if a_te != 0 and is_square(-a_te, p):
                return Curve(p, -1, -d_te * curve.inv(a_te))

    raise ConfigError("no a = -1 twisted-Edwards form found for BLS12-377")
