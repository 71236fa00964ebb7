"""Exception hierarchy for the factorization engine."""


class FactorizationError(Exception):
    """Base class for every error raised by the engine."""


class InvalidInput(FactorizationError, ValueError):
    """The value cannot be factored or certified (n <= 0, non-integers)."""


class ConfigurationError(FactorizationError, ValueError):
    """A FactorizationConfig field is out of range."""


class FactorizationIncomplete(FactorizationError):
    """
    The resource budget ran out before every residue was resolved.

    Carries enough state to resume: the residue being worked on, any other
    residues still waiting on the work-list, and the prime factors already
    certified (as a tuple of Factor records).
    """

    def __init__(self, n: int, residue: int, factors=(), pending=(), reason: str = "budget exhausted"):
        self.n = n
        self.residue = residue
        self.factors = tuple(factors)
        self.pending = tuple(pending)
        self.reason = reason
        super().__init__(
            f"could not finish factoring {n}: residue {residue} unresolved ({reason})"
        )

    def __reduce__(self):
        # keeps the exception intact across the worker pool boundary
        return (type(self), (self.n, self.residue, self.factors, self.pending, self.reason))

    @property
    def unresolved(self) -> tuple[int, ...]:
        """The residue plus every pending residue."""
        return (self.residue,) + self.pending
