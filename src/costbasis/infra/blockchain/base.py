"""Abstract collaborators that supply on-chain data to the engine."""

from abc import ABC, abstractmethod

from costbasis.domain.models.portfolio import InternalTransfer, LogEntry, TransferEvent, TxDetail


class ChainDataSource(ABC):
    """Strategy interface for reading token transfers and transaction data from one chain."""

    @abstractmethod
    async def get_token_transfers(self, wallet_address: str, token_address: str) -> list[TransferEvent]:
        """All transfers of one token touching the wallet, ascending by block. May be empty."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> TxDetail | None:
        """Native value, sender and recipient of a transaction, or None if not found."""

    @abstractmethod
    async def get_receipt_logs(self, tx_hash: str) -> list[LogEntry] | None:
        """Event logs from the transaction receipt, or None if not found."""

    @abstractmethod
    async def get_internal_transfers(
        self, wallet_address: str, from_block: int, to_block: int
    ) -> list[InternalTransfer]:
        """Contract-induced native transfers touching the wallet in a block range."""
