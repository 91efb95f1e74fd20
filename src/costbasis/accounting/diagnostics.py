"""Post-fold sanity checks. Appends warnings/errors, never touches totals."""

import logging
from decimal import Decimal

from costbasis.accounting.ledger import LedgerState

logger = logging.getLogger(__name__)

NEGATIVE_HOLDINGS_EPSILON = Decimal("0.0001")
MIN_SANE_ENTRY_PRICE = Decimal("0.000001")
MAX_SANE_ENTRY_PRICE = Decimal("1000000")


def validate(ledger: LedgerState) -> LedgerState:
    """Flag internally inconsistent or suspicious figures on a finalized ledger.

    Errors mean a figure that cannot occur without a bug upstream (negative USD
    totals). Warnings are plausible but worth showing to the user.
    """
    net = ledger.net_tokens
    if net < -NEGATIVE_HOLDINGS_EPSILON:
        ledger.warnings.append(
            f"Negative holdings detected: {net:.2f} tokens (sold more than bought?)"
        )

    avg = ledger.avg_entry_price
    if avg > 0 and (avg < MIN_SANE_ENTRY_PRICE or avg > MAX_SANE_ENTRY_PRICE):
        ledger.warnings.append(f"Unusual avg entry price: ${avg:.8f} (might indicate data issue)")

    if ledger.total_usd_spent < 0:
        ledger.errors.append(f"Negative total invested: ${ledger.total_usd_spent:.2f} (calculation error!)")
    if ledger.total_usd_received < 0:
        ledger.errors.append(f"Negative total received: ${ledger.total_usd_received:.2f} (calculation error!)")

    if ledger.buy_count == 0 and ledger.tokens_bought > 0:
        ledger.warnings.append(
            f"Tokens bought ({ledger.tokens_bought:.2f}) but no buy transactions counted"
        )
    if ledger.sell_count == 0 and ledger.tokens_sold > 0:
        ledger.warnings.append(
            f"Tokens sold ({ledger.tokens_sold:.2f}) but no sell transactions counted"
        )

    if ledger.tokens_bought > 0 and ledger.total_usd_spent == 0:
        ledger.warnings.append(
            f"Bought {ledger.tokens_bought:.2f} tokens but $0 spent (airdrops/transfers only?)"
        )
    if ledger.tokens_sold > 0 and ledger.total_usd_received == 0:
        ledger.warnings.append(
            f"Sold {ledger.tokens_sold:.2f} tokens but $0 received (gifts/burns only?)"
        )

    if ledger.errors:
        logger.warning("%d error(s) during calculation: %s", len(ledger.errors), ledger.errors)
    if ledger.warnings:
        logger.warning("%d warning(s) during calculation", len(ledger.warnings))
    return ledger
