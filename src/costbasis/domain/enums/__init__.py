from costbasis.domain.enums.flow import Direction, FlowKind
from costbasis.domain.enums.valuation import ValuationSource

__all__ = [
    "Direction",
    "FlowKind",
    "ValuationSource",
]
