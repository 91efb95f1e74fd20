"""Decode ERC-20 Transfer events out of raw receipt logs."""

from decimal import Decimal

from pydantic import BaseModel

from costbasis.domain.enums.flow import Direction
from costbasis.domain.models.portfolio import LogEntry

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

WETH_ADDRESS = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
WETH_DECIMALS = 18

# Stablecoins valued 1:1 in USD, contract -> decimals (Ethereum mainnet)
STABLECOIN_DECIMALS: dict[str, int] = {
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": 6,  # USDC
    "0xdac17f958d2ee523a2206206994597c13d831ec7": 6,  # USDT
    "0x6b175474e89094c44da98b954eedeac495271d0f": 18,  # DAI
}


class LogTransfer(BaseModel):
    """A decoded Transfer(from, to, value) event."""

    token_address: str
    from_address: str
    to_address: str
    value: int  # smallest unit


def _topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def _data_to_int(data: str) -> int:
    payload = data[2:] if data.startswith("0x") else data
    if not payload:
        return 0
    # uint256 value is the first 32-byte word
    return int(payload[:64], 16)


def decode_transfer(log: LogEntry) -> LogTransfer | None:
    """Decode a log if it is an ERC-20 Transfer with indexed from/to, else None."""
    if len(log.topics) < 3 or log.topics[0].lower() != TRANSFER_EVENT_TOPIC:
        return None
    try:
        value = _data_to_int(log.data)
    except ValueError:
        return None
    return LogTransfer(
        token_address=log.address.lower(),
        from_address=_topic_to_address(log.topics[1]),
        to_address=_topic_to_address(log.topics[2]),
        value=value,
    )


def _matches(transfer: LogTransfer, wallet: str, direction: Direction) -> bool:
    if direction == Direction.SENT:
        return transfer.from_address == wallet
    return transfer.to_address == wallet


def sum_transfers(
    logs: list[LogEntry],
    wallet_address: str,
    direction: Direction,
    token_decimals: dict[str, int],
) -> Decimal:
    """Decimal-adjusted total of Transfer events of the given tokens moving in `direction` for the wallet."""
    wallet = wallet_address.lower()
    total = Decimal(0)
    for log in logs:
        decimals = token_decimals.get(log.address.lower())
        if decimals is None:
            continue
        transfer = decode_transfer(log)
        if transfer is None or not _matches(transfer, wallet, direction):
            continue
        total += Decimal(transfer.value) / Decimal(10) ** decimals
    return total


def stablecoin_usd(logs: list[LogEntry], wallet_address: str, direction: Direction) -> Decimal:
    return sum_transfers(logs, wallet_address, direction, STABLECOIN_DECIMALS)


def wrapped_native_amount(logs: list[LogEntry], wallet_address: str, direction: Direction) -> Decimal:
    return sum_transfers(logs, wallet_address, direction, {WETH_ADDRESS: WETH_DECIMALS})
