"""Typed records decoded from Ethereum JSON-RPC payloads.

Nodes encode quantities as ``0x``-prefixed hex strings. Payloads are first
decoded into ``_Raw*`` structs that mirror the wire shape, then converted into
the public records with integer fields.
"""

from __future__ import annotations

import msgspec

from .errors import ChainResponseShapeError


class BlockHeader(msgspec.Struct, kw_only=True, frozen=True):
    """Fields of a ``newHeads`` notification used by the block producer.

    Attributes
    ----------
    number
        Block number, ``None`` for headers the node has not sealed yet.
    base_fee_per_gas
        EIP-1559 base fee, ``None`` on pre-London chains.

    """

    number: int | None
    hash: str | None = None
    parent_hash: str | None = None
    timestamp: int = 0
    gas_used: int = 0
    gas_limit: int = 0
    base_fee_per_gas: int | None = None


class AccessListEntry(msgspec.Struct, frozen=True):
    """An EIP-2930 access list item: a contract and the slots it touches."""

    address: str
    storage_keys: tuple[str, ...] = ()


class Transaction(msgspec.Struct, kw_only=True, frozen=True):
    """A transaction body as returned by ``eth_getTransactionByHash``.

    Signature values and the typed-transaction extensions (access list, blob
    fields) are kept so the body can be re-encoded or simulated later.
    """

    hash: str
    nonce: int
    sender: str
    to: str | None = None
    value: int = 0
    gas: int = 0
    gas_price: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    input: str = "0x"
    tx_type: int = 0
    chain_id: int | None = None
    block_number: int | None = None
    block_hash: str | None = None
    transaction_index: int | None = None
    access_list: tuple[AccessListEntry, ...] = ()
    max_fee_per_blob_gas: int | None = None
    blob_versioned_hashes: tuple[str, ...] = ()
    v: int | None = None
    r: int | None = None
    s: int | None = None
    y_parity: int | None = None


class _RawBlockHeader(msgspec.Struct, rename="camel"):
    number: str | None = None
    hash: str | None = None
    parent_hash: str | None = None
    timestamp: str = "0x0"
    gas_used: str = "0x0"
    gas_limit: str = "0x0"
    base_fee_per_gas: str | None = None


class _RawAccessListEntry(msgspec.Struct, rename="camel"):
    address: str
    storage_keys: list[str] = msgspec.field(default_factory=list)


class _RawTransaction(
    msgspec.Struct,
    rename={
        "sender": "from",
        "gas_price": "gasPrice",
        "max_fee_per_gas": "maxFeePerGas",
        "max_priority_fee_per_gas": "maxPriorityFeePerGas",
        "tx_type": "type",
        "chain_id": "chainId",
        "block_number": "blockNumber",
        "block_hash": "blockHash",
        "transaction_index": "transactionIndex",
        "access_list": "accessList",
        "max_fee_per_blob_gas": "maxFeePerBlobGas",
        "blob_versioned_hashes": "blobVersionedHashes",
        "y_parity": "yParity",
    },
):
    hash: str
    nonce: str
    sender: str
    to: str | None = None
    value: str = "0x0"
    gas: str = "0x0"
    gas_price: str | None = None
    max_fee_per_gas: str | None = None
    max_priority_fee_per_gas: str | None = None
    input: str = "0x"
    tx_type: str = "0x0"
    chain_id: str | None = None
    block_number: str | None = None
    block_hash: str | None = None
    transaction_index: str | None = None
    access_list: list[_RawAccessListEntry] | None = None
    max_fee_per_blob_gas: str | None = None
    blob_versioned_hashes: list[str] | None = None
    v: str | None = None
    r: str | None = None
    s: str | None = None
    y_parity: str | None = None


def parse_quantity(value: str, *, field: str) -> int:
    """Decode a JSON-RPC hex quantity such as ``"0x1a"``.

    Raises
    ------
    ChainResponseShapeError
        If ``value`` is not a ``0x``-prefixed hexadecimal string.

    """
    if not value.startswith(("0x", "0X")):
        raise ChainResponseShapeError.invalid(field, f"not a hex quantity: {value!r}")
    try:
        return int(value, 16)
    except ValueError as exc:
        raise ChainResponseShapeError.invalid(
            field, f"not a hex quantity: {value!r}"
        ) from exc


def _optional_quantity(value: str | None, *, field: str) -> int | None:
    if value is None:
        return None
    return parse_quantity(value, field=field)


def _convert[T](payload: object, raw_type: type[T], what: str) -> T:
    try:
        return msgspec.convert(payload, raw_type)
    except msgspec.ValidationError as exc:
        raise ChainResponseShapeError.invalid(what, str(exc)) from exc


def block_header_from_payload(payload: object) -> BlockHeader:
    """Build a :class:`BlockHeader` from a decoded ``newHeads`` result."""
    raw = _convert(payload, _RawBlockHeader, "block header")
    return BlockHeader(
        number=_optional_quantity(raw.number, field="number"),
        hash=raw.hash,
        parent_hash=raw.parent_hash,
        timestamp=parse_quantity(raw.timestamp, field="timestamp"),
        gas_used=parse_quantity(raw.gas_used, field="gasUsed"),
        gas_limit=parse_quantity(raw.gas_limit, field="gasLimit"),
        base_fee_per_gas=_optional_quantity(
            raw.base_fee_per_gas, field="baseFeePerGas"
        ),
    )


def transaction_from_payload(payload: object) -> Transaction:
    """Build a :class:`Transaction` from a decoded transaction object."""
    raw = _convert(payload, _RawTransaction, "transaction")
    return Transaction(
        hash=raw.hash,
        nonce=parse_quantity(raw.nonce, field="nonce"),
        sender=raw.sender,
        to=raw.to,
        value=parse_quantity(raw.value, field="value"),
        gas=parse_quantity(raw.gas, field="gas"),
        gas_price=_optional_quantity(raw.gas_price, field="gasPrice"),
        max_fee_per_gas=_optional_quantity(raw.max_fee_per_gas, field="maxFeePerGas"),
        max_priority_fee_per_gas=_optional_quantity(
            raw.max_priority_fee_per_gas, field="maxPriorityFeePerGas"
        ),
        input=raw.input,
        tx_type=parse_quantity(raw.tx_type, field="type"),
        chain_id=_optional_quantity(raw.chain_id, field="chainId"),
        block_number=_optional_quantity(raw.block_number, field="blockNumber"),
        block_hash=raw.block_hash,
        transaction_index=_optional_quantity(
            raw.transaction_index, field="transactionIndex"
        ),
        access_list=tuple(
            AccessListEntry(entry.address, tuple(entry.storage_keys))
            for entry in raw.access_list or ()
        ),
        max_fee_per_blob_gas=_optional_quantity(
            raw.max_fee_per_blob_gas, field="maxFeePerBlobGas"
        ),
        blob_versioned_hashes=tuple(raw.blob_versioned_hashes or ()),
        v=_optional_quantity(raw.v, field="v"),
        r=_optional_quantity(raw.r, field="r"),
        s=_optional_quantity(raw.s, field="s"),
        y_parity=_optional_quantity(raw.y_parity, field="yParity"),
    )
