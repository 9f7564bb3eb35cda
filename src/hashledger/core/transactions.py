"""
Signed Transaction Model

A transaction is an immutable statement of intent:
- sender: hex public key of the signer
- receiver: opaque address string
- amount: unsigned 64-bit integer
- signature: hex detached signature over the canonical payload, the compact
  JSON array [sender, receiver, amount]

Transactions are not applied to any balance; they travel as payload records
inside blocks. A transaction whose signature fails to verify is never admitted,
persisted or rebroadcast.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List

from .errors import DecodeError, VerificationError
from .wallet import Wallet

MAX_AMOUNT = 2 ** 64 - 1


def canonical_payload(sender: str, receiver: str, amount: int) -> bytes:
    """
    The exact bytes that get signed: a compact JSON array [sender, receiver, amount].

    Field boundaries are explicit, so no two distinct triples share a payload.
    Output is pure ASCII.
    """
    return json.dumps([sender, receiver, amount], separators=(',', ':')).encode('ascii')


def require_text(record: Dict[str, Any], name: str, kind: str) -> str:
    """
    Raises:
        DecodeError: if record[name] is not a string that encodes as UTF-8
    """
    value = record.get(name)
    if not isinstance(value, str):
        raise DecodeError(f"{kind} field '{name}' must be a string")
    try:
        value.encode('utf-8')
    except UnicodeEncodeError as e:
        raise DecodeError(f"{kind} field '{name}' is not valid UTF-8") from e
    return value


def _require_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an integer, got {type(amount).__name__}")
    if not 0 <= amount <= MAX_AMOUNT:
        raise ValueError(f"amount {amount} outside unsigned 64-bit range")
    return amount


@dataclass(frozen=True)
class Transaction:
    """Signed transfer record; construct with Transaction.create()."""
    sender: str
    receiver: str
    amount: int
    signature: str

    @classmethod
    def create(cls, wallet: Wallet, receiver: str, amount: int) -> 'Transaction':
        """
        Build and sign a transaction from the wallet's identity.

        Raises:
            ValueError: if amount is not an unsigned 64-bit integer
            SigningError: if the wallet cannot sign
        """
        amount = _require_amount(amount)
        sender = wallet.public_key
        signature = wallet.sign(canonical_payload(sender, receiver, amount))
        return cls(sender=sender, receiver=receiver, amount=amount, signature=signature)

    def payload(self) -> bytes:
        return canonical_payload(self.sender, self.receiver, self.amount)

    def verify(self) -> bool:
        """Check the signature against the sender key. Never raises."""
        try:
            payload = self.payload()
        except (TypeError, ValueError):
            return False
        return Wallet.verify(payload, self.signature, self.sender)

    def ensure_valid(self) -> None:
        """
        Raises:
            VerificationError: if the signature does not verify
        """
        if not self.verify():
            raise VerificationError(f"{self} signature does not verify")

    def hash(self) -> str:
        """Digest of payload and signature, used to identify a transaction in logs."""
        return hashlib.sha256(self.payload() + self.signature.encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sender': self.sender,
            'receiver': self.receiver,
            'amount': self.amount,
            'signature': self.signature,
        }

    @classmethod
    def from_dict(cls, record: Any) -> 'Transaction':
        """
        Rebuild a transaction from a decoded record.

        Only the structure is checked here; the signature is checked by verify().

        Raises:
            DecodeError: if fields are missing or have the wrong type
        """
        if not isinstance(record, dict):
            raise DecodeError("transaction record must be an object")

        for name in ('sender', 'receiver', 'signature'):
            require_text(record, name, "transaction")

        try:
            amount = _require_amount(record.get('amount'))
        except ValueError as e:
            raise DecodeError(f"transaction field 'amount' invalid: {e}") from e

        return cls(
            sender=record['sender'],
            receiver=record['receiver'],
            amount=amount,
            signature=record['signature'],
        )

    def __str__(self) -> str:
        return f"Transaction({self.sender[:8]}... -> {self.receiver[:16]}, {self.amount})"


def encode_batch(transactions: List[Transaction]) -> str:
    """Serialize a batch of transactions into a block payload."""
    return json.dumps([tx.to_dict() for tx in transactions], separators=(',', ':'))


def decode_batch(data: str) -> List[Transaction]:
    """
    Parse a block payload produced by encode_batch().

    Raises:
        DecodeError: if the payload is not a list of transaction records
    """
    try:
        records = json.loads(data)
    except (ValueError, TypeError, RecursionError) as e:
        raise DecodeError(f"payload is not JSON: {e}") from e

    if not isinstance(records, list):
        raise DecodeError("payload is not a transaction batch")

    return [Transaction.from_dict(record) for record in records]
