"""Etherscan v2 API client: token transfers, transactions, receipts, internal transfers."""

import logging
from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from costbasis.domain.models.portfolio import InternalTransfer, LogEntry, TransferEvent, TxDetail
from costbasis.exceptions import ExternalServiceError, RateLimitedError
from costbasis.infra.blockchain.base import ChainDataSource
from costbasis.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

# Etherscan v2 uses a single base URL + chainid param
BASE_URL = "https://api.etherscan.io/v2/api"

ETHEREUM_MAINNET = 1
MAX_BLOCK = 99999999
MAX_RESULTS = 10_000  # Etherscan max results per call


def _hex_to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    if text in ("", "0x"):
        return 0
    return int(text, 16) if text.startswith("0x") else int(text)


class EtherscanClient(ChainDataSource):
    def __init__(self, api_key: str, http_client: RateLimitedClient, chain_id: int = ETHEREUM_MAINNET) -> None:
        self._api_key = api_key
        self._chain_id = chain_id
        self._http = http_client

    @retry(
        retry=retry_if_exception_type(ExternalServiceError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call(self, params: dict[str, Any]) -> Any:
        """Issue one API call. Returns the raw ``result`` field.

        Raises ExternalServiceError (retried) on rate limits and API errors.
        """
        params = {**params, "apikey": self._api_key, "chainid": self._chain_id}
        resp = await self._http.get(BASE_URL, params=params)
        if resp.status_code == 429:
            raise RateLimitedError("Etherscan returned 429")
        if resp.status_code != 200:
            raise ExternalServiceError(f"Etherscan returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ExternalServiceError(f"Etherscan returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ExternalServiceError("Etherscan returned an unexpected payload")

        # JSON-RPC proxy responses: {"jsonrpc", "id", "result"} or {"error": {...}}
        if "jsonrpc" in data:
            if "error" in data:
                raise ExternalServiceError(f"Etherscan proxy error: {data['error']}")
            return data.get("result")

        status = data.get("status")
        message = data.get("message") or ""
        result = data.get("result")

        # "No transactions found" is valid empty result
        if message.startswith("No transactions found") or (status == "0" and result == []):
            return []

        if isinstance(result, str) and "rate limit" in result.lower():
            raise RateLimitedError(f"Etherscan rate limit: {result}")

        # NOTOK or malformed envelope
        if message == "NOTOK" or status is None:
            raise ExternalServiceError(f"Etherscan error: {result or message}")

        if status == "0":
            error_msg = result if isinstance(result, str) else message
            raise ExternalServiceError(f"Etherscan API error: {error_msg}")

        return result

    async def get_token_transfers(self, wallet_address: str, token_address: str) -> list[TransferEvent]:
        rows = await self._fetch_with_split(
            action="tokentx",
            address=wallet_address,
            from_block=0,
            to_block=MAX_BLOCK,
            extra={"contractaddress": token_address},
        )
        events: list[TransferEvent] = []
        for row in rows:
            try:
                events.append(TransferEvent(
                    block_number=int(row["blockNumber"]),
                    timestamp=int(row["timeStamp"]),
                    tx_hash=row["hash"],
                    from_address=row.get("from", "").lower(),
                    to_address=row.get("to", "").lower(),
                    raw_amount=int(row.get("value", 0)),
                    decimals=int(row.get("tokenDecimal") or 18),
                ))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed tokentx row: %s", row)
        return events

    async def get_transaction(self, tx_hash: str) -> TxDetail | None:
        result = await self._call({
            "module": "proxy",
            "action": "eth_getTransactionByHash",
            "txhash": tx_hash,
        })
        if not isinstance(result, dict):
            return None
        try:
            return TxDetail(
                tx_hash=result.get("hash", tx_hash),
                from_address=(result.get("from") or "").lower(),
                to_address=(result.get("to") or "").lower() or None,
                value_wei=_hex_to_int(result.get("value")),
            )
        except ValueError as e:
            raise ExternalServiceError(f"Malformed transaction {tx_hash}: {e}") from e

    async def get_receipt_logs(self, tx_hash: str) -> list[LogEntry] | None:
        result = await self._call({
            "module": "proxy",
            "action": "eth_getTransactionReceipt",
            "txhash": tx_hash,
        })
        if not isinstance(result, dict) or result.get("logs") is None:
            return None
        return [
            LogEntry(
                address=(log.get("address") or "").lower(),
                topics=[t.lower() for t in log.get("topics", [])],
                data=log.get("data") or "0x",
            )
            for log in result["logs"]
        ]

    async def get_internal_transfers(
        self, wallet_address: str, from_block: int = 0, to_block: int = MAX_BLOCK
    ) -> list[InternalTransfer]:
        rows = await self._fetch_with_split(
            action="txlistinternal",
            address=wallet_address,
            from_block=from_block,
            to_block=to_block,
        )
        transfers: list[InternalTransfer] = []
        for row in rows:
            # Skip errored internal TXs
            if row.get("isError", "0") == "1":
                continue
            value = int(row.get("value") or 0)
            if value == 0:
                continue
            transfers.append(InternalTransfer(
                tx_hash=row.get("hash", "").lower(),
                from_address=row.get("from", "").lower(),
                to_address=row.get("to", "").lower(),
                value_wei=value,
            ))
        return transfers

    async def _fetch_with_split(
        self,
        action: str,
        address: str,
        from_block: int,
        to_block: int,
        extra: dict[str, Any] | None = None,
    ) -> list[dict]:
        """Recursive account-module fetch with 10K result splitting."""
        params = {
            "module": "account",
            "action": action,
            "address": address,
            "startblock": from_block,
            "endblock": to_block,
            "sort": "asc",
            **(extra or {}),
        }
        results = await self._call(params)
        if not isinstance(results, list):
            return []

        if len(results) < MAX_RESULTS:
            return results

        # Hit the 10K limit, split block range in half and recurse
        mid_block = (from_block + to_block) // 2
        if mid_block == from_block:
            logger.warning(
                "Cannot split further at block %d for %s/%s, returning partial results",
                from_block, action, address,
            )
            return results

        logger.info(
            "Splitting %s range [%d, %d] at %d for address %s",
            action, from_block, to_block, mid_block, address,
        )
        first_half = await self._fetch_with_split(action, address, from_block, mid_block, extra)
        second_half = await self._fetch_with_split(action, address, mid_block + 1, to_block, extra)
        return first_half + second_half
