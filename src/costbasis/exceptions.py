"""Exception hierarchy for the cost-basis engine."""


class CostBasisError(Exception):
    """Base class for all engine errors."""


class ExternalServiceError(CostBasisError):
    """A third-party data source (explorer, price API) failed or returned garbage."""


class RateLimitedError(ExternalServiceError):
    """The data source answered with an explicit "too many requests" signal."""


class ComputationAbandonedError(CostBasisError):
    """The request that owns a computation was abandoned before it finished."""
