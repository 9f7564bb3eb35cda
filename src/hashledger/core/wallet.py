"""
Wallet and Signature Primitives

A wallet owns one SECP256k1 keypair and produces detached signatures over
arbitrary byte payloads. The rest of the ledger only ever sees:
- sign(message) -> hex signature
- Wallet.verify(message, signature_hex, public_key_hex) -> bool
- public_key, the hex identity used as sender and validator

Key format and curve stay private to this module.
"""

import hashlib
import json
from pathlib import Path
from typing import Optional, Union

from ecdsa import SECP256k1, BadSignatureError, MalformedPointError, SigningKey, VerifyingKey

from .errors import SigningError


class Wallet:
    """
    Holder of private key material.

    Signatures use SHA-256 as the message digest so that every node agrees
    on the exact bytes being signed.
    """

    curve = SECP256k1

    def __init__(self, signing_key: Optional[SigningKey] = None):
        self._signing_key = signing_key or SigningKey.generate(curve=self.curve)
        self.public_key = self._signing_key.verifying_key.to_string().hex()

    @classmethod
    def generate(cls) -> 'Wallet':
        return cls()

    @classmethod
    def from_private_key_hex(cls, private_key_hex: str) -> 'Wallet':
        """Rebuild a wallet from an exported private key."""
        try:
            signing_key = SigningKey.from_string(bytes.fromhex(private_key_hex), curve=cls.curve)
        except (ValueError, TypeError, MalformedPointError) as e:
            raise SigningError(f"Invalid private key: {e}") from e
        return cls(signing_key)

    def export_private_key(self) -> str:
        return self._signing_key.to_string().hex()

    def sign(self, message: Union[bytes, str]) -> str:
        """
        Sign a payload and return the signature as hex.

        Raises:
            SigningError: if the key cannot produce a signature
        """
        if isinstance(message, str):
            message = message.encode('utf-8')
        try:
            return self._signing_key.sign(message, hashfunc=hashlib.sha256).hex()
        except (ValueError, TypeError, RuntimeError) as e:
            raise SigningError(f"Failed to sign payload: {e}") from e

    @staticmethod
    def verify(message: Union[bytes, str], signature_hex: str, public_key_hex: str) -> bool:
        """
        Check a detached signature.

        Malformed hex, malformed keys and malformed signatures all count as
        a failed verification rather than an error.
        """
        if isinstance(message, str):
            message = message.encode('utf-8')
        try:
            verifying_key = VerifyingKey.from_string(bytes.fromhex(public_key_hex), curve=Wallet.curve)
            return verifying_key.verify(bytes.fromhex(signature_hex), message, hashfunc=hashlib.sha256)
        except (ValueError, TypeError, AssertionError, BadSignatureError, MalformedPointError):
            return False

    # Wallet files

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump({
                'private_key': self.export_private_key(),
                'public_key': self.public_key,
            }, f, indent=2)

    @classmethod
    def load(cls, path: Path) -> 'Wallet':
        """
        Load a wallet saved with save().

        Raises:
            SigningError: if the file is missing or does not hold a usable key
        """
        try:
            with open(path) as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SigningError(f"Could not load wallet from {path}: {e}") from e

        if not isinstance(stored, dict) or not isinstance(stored.get('private_key'), str):
            raise SigningError(f"Wallet file {path} has no private key")

        wallet = cls.from_private_key_hex(stored['private_key'])
        if stored.get('public_key') not in (None, wallet.public_key):
            raise SigningError(f"Wallet file {path} public key does not match its private key")
        return wallet

    @classmethod
    def load_or_create(cls, path: Path) -> 'Wallet':
        path = Path(path)
        if path.exists():
            return cls.load(path)
        wallet = cls.generate()
        wallet.save(path)
        return wallet

    def __repr__(self) -> str:
        return f"Wallet({self.public_key[:16]}...)"
