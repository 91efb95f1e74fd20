from enum import Enum


class FlowKind(str, Enum):
    """How a token transfer moves relative to the tracked wallet."""

    INFLOW = "INFLOW"  # wallet is recipient (buy / receive)
    OUTFLOW = "OUTFLOW"  # wallet is sender (sell / send)
    SELF_TRANSFER = "SELF_TRANSFER"  # sender == recipient == wallet
    NEITHER = "NEITHER"


class Direction(str, Enum):
    """Which way the counter-asset moves for the wallet in a trade leg.

    A buy pays out (SENT), a sell takes in (RECEIVED).
    """

    SENT = "sent"
    RECEIVED = "received"
