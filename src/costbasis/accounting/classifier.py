"""Ledger entry classification: which side of a transfer the wallet is on."""

from costbasis.domain.enums.flow import FlowKind
from costbasis.domain.models.portfolio import TransferEvent


def classify(event: TransferEvent, wallet_address: str) -> FlowKind:
    """Label a transfer as inflow / outflow relative to the wallet.

    Address comparison is case-insensitive. A transfer from the wallet to itself
    is a SELF_TRANSFER and moves no tokens.
    """
    wallet = wallet_address.lower()
    is_sender = event.from_address.lower() == wallet
    is_recipient = event.to_address.lower() == wallet

    if is_sender and is_recipient:
        return FlowKind.SELF_TRANSFER
    if is_recipient:
        return FlowKind.INFLOW
    if is_sender:
        return FlowKind.OUTFLOW
    return FlowKind.NEITHER
