"""
Modular arithmetic under a fixed odd modulus.

A ModulusContext is built once per modulus and reused for every operation of
a primality test, a rho run or a p-1 run against that modulus. Arithmetic is
delegated to gmpy2; GMP's powm already reduces in the Montgomery domain for
odd moduli, so the context only caches the mpz modulus and the constants the
testers keep asking for.
"""
import gmpy2
from gmpy2 import mpz


class ModulusContext:
    """Fixed odd modulus m >= 3. Every operation returns a value in [0, m)."""

    __slots__ = ('modulus', 'm', 'minus_one', '_half')

    def __init__(self, modulus: int):
        if modulus < 3 or modulus % 2 == 0:
            raise ValueError(f"modulus must be odd and >= 3, got {modulus}")
        self.modulus: int = int(modulus)
        self.m = mpz(modulus)
        self.minus_one = self.m - 1
        # inverse of 2 modulo an odd m
        self._half = (self.m + 1) // 2

    def __repr__(self) -> str:
        return f"ModulusContext({self.modulus})"

    def reduce(self, a) -> mpz:
        return mpz(a) % self.m

    def mulmod(self, a, b) -> mpz:
        return a * b % self.m

    def sqrmod(self, a) -> mpz:
        return a * a % self.m

    def addmod(self, a, b) -> mpz:
        return (a + b) % self.m

    def submod(self, a, b) -> mpz:
        return (a - b) % self.m

    def powmod(self, base, exponent) -> mpz:
        if exponent < 0:
            raise ValueError("negative exponents are not supported")
        return gmpy2.powmod(base, exponent, self.m)

    def half(self, a) -> mpz:
        """a / 2 mod m."""
        return a * self._half % self.m

    def gcd(self, a) -> mpz:
        return gmpy2.gcd(a, self.m)


def two_adic_split(n: int) -> tuple[int, int]:
    """Write n = 2^s * d with d odd; returns (s, d). n must be positive."""
    n = mpz(n)
    s = gmpy2.bit_scan1(n)
    return int(s), int(n >> s)
