"""Records kept in the document cache."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Dict, Iterable, Optional, Set, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from cache.core import NATURAL_KEY_FIELD
from .constants import NULL_ADDRESS, balance_key


def _lower(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    return value


class TransactionRecord(BaseModel):
    """A transaction touching a tracked address, keyed by hash."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    hash: str
    sender: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("from", "sender", "from_"),
        serialization_alias="from",
    )
    to: Optional[str] = None
    value: Decimal = Decimal(0)
    creates: Optional[str] = None
    data: Optional[str] = None
    block_number: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("block_number", "blockNumber"),
    )

    @field_validator("hash", "sender", "to", "creates", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return _lower(value)

    @field_validator("value", mode="before")
    @classmethod
    def _exact_value(cls, value):
        # Big number objects and floats go through their decimal string form
        if value is None:
            return Decimal(0)
        if isinstance(value, (Decimal, int, str)):
            return value
        return Decimal(str(value))

    @classmethod
    def from_update(cls, update: Any) -> 'TransactionRecord':
        """Build a record from a history entry or notification payload."""
        if isinstance(update, TransactionRecord):
            return update
        if isinstance(update, dict):
            return cls.model_validate(update)
        return cls.model_validate(update, from_attributes=True)

    @property
    def uuid(self) -> str:
        return self.hash

    def counterparties(self) -> Set[str]:
        return {address for address in (self.sender, self.to) if address}

    def to_document(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        payload[NATURAL_KEY_FIELD] = self.hash
        return payload


class Account(BaseModel):
    """Tracked address with its merged transaction hashes and block watermark."""

    address: str
    last_block: int = 0
    transactions: Set[str] = Field(default_factory=set)

    @field_validator("address", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return _lower(value)

    @classmethod
    def from_document(cls, address: str, payload: Dict[str, Any]) -> 'Account':
        return cls(
            address=payload.get("address") or address,
            last_block=payload.get("last_block") or 0,
            transactions=payload.get("transactions") or set(),
        )

    def merge(self, transactions: Iterable[TransactionRecord]) -> int:
        """
        Merge observed transactions into this account.

        The watermark only moves forward.

        Returns:
            Number of hashes not previously known
        """
        added = 0
        for transaction in transactions:
            if transaction.hash not in self.transactions:
                self.transactions.add(transaction.hash)
                added += 1

            if transaction.block_number is not None and transaction.block_number > self.last_block:
                self.last_block = transaction.block_number

        return added

    def to_document(self) -> Dict[str, Any]:
        payload = self.model_dump()
        payload[NATURAL_KEY_FIELD] = self.address
        return payload


class TokenMetadata(BaseModel):
    """ERC20 metadata, cached indefinitely once resolved."""

    address: str
    name: str
    symbol: str
    decimals: int

    REQUIRED: ClassVar[Tuple[str, ...]] = ("address", "name", "symbol", "decimals")

    @field_validator("address", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return _lower(value)

    @classmethod
    def is_complete(cls, payload: Dict[str, Any]) -> bool:
        return all(payload.get(field) is not None for field in cls.REQUIRED)

    def to_document(self) -> Dict[str, Any]:
        payload = self.model_dump()
        payload[NATURAL_KEY_FIELD] = self.address
        return payload


class BalanceRecord(BaseModel):
    """Last computed balance of ``address`` in ``token``."""

    address: str
    token: str = NULL_ADDRESS
    balance: Decimal
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("address", "token", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return _lower(value)

    @property
    def uuid(self) -> str:
        return balance_key(self.address, self.token)

    def to_document(self) -> Dict[str, Any]:
        payload = self.model_dump()
        payload[NATURAL_KEY_FIELD] = self.uuid
        return payload
