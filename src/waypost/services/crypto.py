# src/waypost/services/crypto.py
"""RSA key handling and body digests for HTTP signatures."""

from __future__ import annotations

import base64
import hashlib

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
DIGEST_PREFIX = "SHA-256="


class CryptoService:
    """Service handling the RSA-SHA256 primitives used by federation."""

    @staticmethod
    def generate_key_pair() -> tuple[str, str]:
        """Generate a new RSA key pair for a local actor.

        Returns:
            Tuple of (private_key_pem, public_key_pem)
        """
        private_key = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        return private_pem, public_pem

    @staticmethod
    def load_private_key(private_key_pem: str) -> rsa.RSAPrivateKey:
        """Load a PEM private key, rejecting anything that is not RSA."""
        try:
            key = serialization.load_pem_private_key(private_key_pem.encode(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise ValueError(f"Invalid private key: {err}") from err
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("Only RSA private keys are supported")
        return key

    @staticmethod
    def load_public_key(public_key_pem: str) -> rsa.RSAPublicKey:
        """Load a PEM public key, rejecting anything that is not RSA."""
        try:
            key = serialization.load_pem_public_key(public_key_pem.encode())
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise ValueError(f"Invalid public key: {err}") from err
        if not isinstance(key, rsa.RSAPublicKey):
            raise ValueError("Only RSA public keys are supported")
        return key

    @staticmethod
    def sign_bytes(private_key_pem: str, message: bytes) -> str:
        """Sign ``message`` with RSA-SHA256 (PKCS#1 v1.5) and return base64."""
        key = CryptoService.load_private_key(private_key_pem)
        signature = key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    @staticmethod
    def verify_bytes(public_key_pem: str, message: bytes, signature_b64: str) -> bool:
        """Verify a base64 RSA-SHA256 signature over raw bytes."""
        try:
            signature = base64.b64decode(signature_b64, validate=True)
        except ValueError:
            return False
        try:
            key = CryptoService.load_public_key(public_key_pem)
            key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
            return True
        except (InvalidSignature, ValueError):
            return False

    @staticmethod
    def compute_digest(body: bytes) -> str:
        """Return the ``Digest`` header value for a request body."""
        digest = hashlib.sha256(body).digest()
        return DIGEST_PREFIX + base64.b64encode(digest).decode("ascii")
