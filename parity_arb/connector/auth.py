"""
Account authentication for the CLOB API.
L1 headers carry an EIP-712 wallet signature (credential derivation only);
L2 headers carry an HMAC-SHA256 signature over each authenticated request.
"""

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_typed_data


AUTH_MESSAGE = "This message attests that I control the given wallet"

CLOB_AUTH_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
    ],
    "ClobAuth": [
        {"name": "address", "type": "address"},
        {"name": "timestamp", "type": "string"},
        {"name": "nonce", "type": "uint256"},
        {"name": "message", "type": "string"},
    ],
}


@dataclass(frozen=True)
class ApiCredentials:
    """L2 API credentials."""
    api_key: str
    api_secret: str
    api_passphrase: str


class AuthManager:
    """Holds the wallet and, once known, the L2 credentials."""

    def __init__(
        self,
        private_key: str,
        credentials: Optional[ApiCredentials] = None,
        chain_id: int = 137,
    ):
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.chain_id = chain_id
        self.credentials = credentials

    def get_l1_headers(self, nonce: int = 0) -> dict[str, str]:
        """EIP-712 signed headers used to create or derive API credentials."""
        timestamp = str(int(time.time()))
        typed_data = {
            "types": CLOB_AUTH_TYPES,
            "primaryType": "ClobAuth",
            "domain": {"name": "ClobAuthDomain", "version": "1", "chainId": self.chain_id},
            "message": {
                "address": self.address,
                "timestamp": timestamp,
                "nonce": nonce,
                "message": AUTH_MESSAGE,
            },
        }
        signed = self.account.sign_message(encode_typed_data(full_message=typed_data))
        signature = signed.signature.hex()
        if not signature.startswith("0x"):
            signature = "0x" + signature

        return {
            "POLY_ADDRESS": self.address,
            "POLY_SIGNATURE": signature,
            "POLY_TIMESTAMP": timestamp,
            "POLY_NONCE": str(nonce),
        }

    def get_l2_headers(self, method: str, path: str, body: str = "") -> dict[str, str]:
        """HMAC headers for an authenticated request."""
        if self.credentials is None:
            raise ValueError("API credentials required for L2 authentication")

        timestamp = str(int(time.time()))
        message = timestamp + method.upper() + path + body
        secret = base64.urlsafe_b64decode(self.credentials.api_secret)
        digest = hmac.new(secret, message.encode("utf-8"), hashlib.sha256).digest()

        return {
            "POLY_ADDRESS": self.address,
            "POLY_SIGNATURE": base64.urlsafe_b64encode(digest).decode("utf-8"),
            "POLY_TIMESTAMP": timestamp,
            "POLY_API_KEY": self.credentials.api_key,
            "POLY_PASSPHRASE": self.credentials.api_passphrase,
        }

    def has_l2_credentials(self) -> bool:
        return self.credentials is not None

    @property
    def owner(self) -> str:
        """API key that owns submitted orders."""
        if self.credentials is None:
            raise ValueError("API credentials not set")
        return self.credentials.api_key
