from decimal import Decimal
from types import SimpleNamespace

from blockchain.constants import NULL_ADDRESS
from blockchain.models import Account, BalanceRecord, TokenMetadata, TransactionRecord

from .conftest import OTHER, TOKEN, WALLET, tx_hash


def test_transaction_record_accepts_feed_shapes():
    from_dict = TransactionRecord.from_update({
        "hash": tx_hash(1).upper().replace("0X", "0x"),
        "from": WALLET.upper().replace("0X", "0x"),
        "to": OTHER,
        "value": "1000000000000000000000001",
        "blockNumber": 7,
    })
    from_object = TransactionRecord.from_update(SimpleNamespace(
        hash=tx_hash(2), from_=OTHER, to=WALLET, value=3.5, block_number=8,
        creates=None, data="0x",
    ))

    assert from_dict.hash == tx_hash(1)
    assert from_dict.sender == WALLET
    assert from_dict.value == Decimal("1000000000000000000000001")
    assert from_dict.block_number == 7
    assert from_object.sender == OTHER
    assert from_object.value == Decimal("3.5")


def test_transaction_document_uses_wire_names():
    record = TransactionRecord(hash=tx_hash(1), sender=WALLET, to=None, value=1)
    payload = record.to_document()

    assert payload["uuid"] == tx_hash(1)
    assert payload["from"] == WALLET
    assert record.counterparties() == {WALLET}


def test_account_watermark_only_moves_forward():
    account = Account(address=WALLET.upper().replace("0X", "0x"), last_block=20)
    added = account.merge([
        TransactionRecord(hash=tx_hash(1), block_number=5),
        TransactionRecord(hash=tx_hash(2), block_number=25),
        TransactionRecord(hash=tx_hash(2), block_number=25),
    ])

    assert added == 2
    assert account.last_block == 25
    assert account.address == WALLET
    assert account.to_document()["uuid"] == WALLET


def test_account_from_empty_document():
    account = Account.from_document(WALLET, {"uuid": WALLET})

    assert account.last_block == 0
    assert account.transactions == set()


def test_token_metadata_completeness():
    assert not TokenMetadata.is_complete({"uuid": TOKEN, "name": "Token"})
    assert TokenMetadata.is_complete(
        {"address": TOKEN, "name": "Token", "symbol": "TKN", "decimals": 0}
    )


def test_balance_record_key():
    record = BalanceRecord(address=WALLET, balance=Decimal("1.25"))

    assert record.token == NULL_ADDRESS
    assert record.uuid == f"{WALLET}.{NULL_ADDRESS}.balance"
    assert record.to_document()["updated_at"].tzinfo is not None
