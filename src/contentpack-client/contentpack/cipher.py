"""
Chiffrement symétrique de l'objet complet, appliqué avant le découpage.

Les pièces ne contiennent donc jamais de clair. Chaque appel à ``encrypt``
tire un IV neuf (12 bytes pour AES-GCM et ChaCha20-Poly1305, 16 bytes pour
AES-CTR); un IV n'est jamais réutilisé avec la même clé.

Les clés circulent sous forme de chaîne opaque (hex en sortie, hex ou
base64 accepté en entrée). Leur stockage est à la charge de l'appelant.
"""

import base64
import binascii
import os
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import CipherAlgorithm, EncryptionConfig
from .exceptions import DecryptionError

IV_SIZES = {
    CipherAlgorithm.AES_GCM: 12,
    CipherAlgorithm.CHACHA20_POLY1305: 12,
    CipherAlgorithm.AES_CTR: 16,
}

# Longueurs de clé acceptées (bytes)
KEY_SIZES = {
    CipherAlgorithm.AES_GCM: (16, 32),
    CipherAlgorithm.AES_CTR: (16, 32),
    CipherAlgorithm.CHACHA20_POLY1305: (32,),
}

AEAD_TAG_SIZE = 16
SALT_SIZE = 16
PBKDF2_ITERATIONS = 100_000

KeyInput = Union[str, bytes]


@dataclass(frozen=True)
class EncryptionEnvelope:
    """
    IV, algorithme et données chiffrées.

    ``key_material`` n'est renseigné que lorsque ``encrypt`` a généré la clé:
    l'appelant doit l'extraire et la conserver hors bande.
    """
    iv: bytes
    algorithm: CipherAlgorithm
    ciphertext: bytes
    key_material: Optional[str] = None

    def to_bytes(self) -> bytes:
        """Format stocké: iv || ciphertext."""
        return self.iv + self.ciphertext

    @classmethod
    def from_bytes(cls, blob: bytes, algorithm: Union[str, CipherAlgorithm]) -> 'EncryptionEnvelope':
        """
        Sépare un blob ``iv || ciphertext``.

        Raises:
            DecryptionError: Algorithme inconnu ou blob trop court
        """
        algo = _parse_algorithm(algorithm)
        iv_size = IV_SIZES[algo]
        minimum = iv_size + (0 if algo is CipherAlgorithm.AES_CTR else AEAD_TAG_SIZE)
        if len(blob) < minimum:
            raise DecryptionError(
                "Encrypted blob is too short",
                {"size": len(blob), "minimum": minimum},
                algorithm=algo.value,
                reason="truncated"
            )
        return cls(iv=blob[:iv_size], algorithm=algo, ciphertext=blob[iv_size:])

    def to_metadata(self, key_size: int = 256) -> Dict[str, Any]:
        """Métadonnées hex de l'enveloppe (sans les données chiffrées)."""
        metadata = {
            'iv': self.iv.hex(),
            'algorithm': self.algorithm.value,
            'keySize': key_size,
            'timestamp': int(time.time() * 1000),
        }
        if self.key_material is not None:
            metadata['keyMaterial'] = self.key_material
        return metadata

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any], ciphertext: bytes) -> 'EncryptionEnvelope':
        try:
            iv = bytes.fromhex(metadata['iv'])
        except (KeyError, ValueError) as e:
            raise DecryptionError("Invalid envelope metadata", reason="metadata") from e
        return cls(
            iv=iv,
            algorithm=_parse_algorithm(metadata.get('algorithm', CipherAlgorithm.AES_GCM.value)),
            ciphertext=ciphertext,
            key_material=metadata.get('keyMaterial'),
        )


def _parse_algorithm(algorithm: Union[str, CipherAlgorithm]) -> CipherAlgorithm:
    try:
        return CipherAlgorithm.parse(algorithm)
    except ValueError as e:
        raise DecryptionError(
            "Unsupported algorithm",
            algorithm=str(algorithm),
            reason="algorithm"
        ) from e


def encode_key(key: bytes) -> str:
    """Encode une clé brute en chaîne opaque (hex)."""
    return key.hex()


def decode_key(key: KeyInput, algorithm: CipherAlgorithm) -> bytes:
    """
    Décode une clé hex ou base64 et vérifie sa longueur.

    Raises:
        ValueError: Clé absente, mal encodée ou de longueur incorrecte
    """
    if not key:
        raise ValueError('Missing key')
    allowed = KEY_SIZES[algorithm]
    if isinstance(key, bytes):
        raw = key
    else:
        try:
            raw = bytes.fromhex(key)
        except ValueError:
            raw = None
        if raw is None or len(raw) not in allowed:
            try:
                raw = base64.b64decode(key, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError('Invalid key encoding (expected hex or base64)') from e
    if len(raw) not in allowed:
        raise ValueError(
            f'Invalid key length ({len(raw)} bytes), expected one of {allowed}'
        )
    return raw


def generate_key(key_size: int = 256) -> str:
    """Génère une clé aléatoire de ``key_size`` bits, encodée en hex."""
    return encode_key(AESGCM.generate_key(bit_length=key_size))


def validate_key(key: str, key_size: int = 256) -> bool:
    """Vérifie qu'une clé hex a la longueur attendue."""
    try:
        return len(bytes.fromhex(key)) == key_size // 8
    except (TypeError, ValueError):
        return False


def generate_salt() -> bytes:
    return os.urandom(SALT_SIZE)


def derive_key_from_password(password: str, salt: bytes,
                             iterations: int = PBKDF2_ITERATIONS) -> str:
    """Dérive une clé 256 bits (hex) depuis un mot de passe avec PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return encode_key(kdf.derive(password.encode('utf-8')))


def encrypt(plaintext: bytes, key: Optional[KeyInput] = None,
            algorithm: Union[str, CipherAlgorithm] = CipherAlgorithm.AES_GCM,
            key_size: int = 256) -> EncryptionEnvelope:
    """
    Chiffre ``plaintext`` avec un IV aléatoire neuf.

    Si ``key`` est None, une clé de ``key_size`` bits est générée et
    retournée dans ``envelope.key_material``.

    Raises:
        ValueError: Algorithme inconnu ou clé fournie invalide
    """
    algo = CipherAlgorithm.parse(algorithm)
    generated = None
    if key is None:
        if algo is CipherAlgorithm.CHACHA20_POLY1305:
            raw_key = ChaCha20Poly1305.generate_key()
        else:
            raw_key = AESGCM.generate_key(bit_length=key_size)
        generated = encode_key(raw_key)
    else:
        raw_key = decode_key(key, algo)

    iv = os.urandom(IV_SIZES[algo])
    if algo is CipherAlgorithm.AES_GCM:
        ct = AESGCM(raw_key).encrypt(iv, plaintext, None)
    elif algo is CipherAlgorithm.CHACHA20_POLY1305:
        ct = ChaCha20Poly1305(raw_key).encrypt(iv, plaintext, None)
    else:
        encryptor = Cipher(algorithms.AES(raw_key), modes.CTR(iv)).encryptor()
        ct = encryptor.update(plaintext) + encryptor.finalize()

    return EncryptionEnvelope(iv=iv, algorithm=algo, ciphertext=ct, key_material=generated)


def decrypt(envelope: EncryptionEnvelope, key: KeyInput) -> bytes:
    """
    Déchiffre une enveloppe.

    AES-CTR n'est pas authentifié: une altération n'y est pas détectée
    ici, seulement par les empreintes du manifeste.

    Raises:
        DecryptionError: Clé de longueur incorrecte, algorithme inconnu,
            IV invalide ou échec d'authentification
    """
    algo = _parse_algorithm(envelope.algorithm)
    try:
        raw_key = decode_key(key, algo)
    except ValueError as e:
        raise DecryptionError(str(e), algorithm=algo.value, reason="key_length") from e
    if len(envelope.iv) != IV_SIZES[algo]:
        raise DecryptionError(
            "Invalid IV length",
            {"iv_size": len(envelope.iv)},
            algorithm=algo.value,
            reason="iv"
        )

    try:
        if algo is CipherAlgorithm.AES_GCM:
            return AESGCM(raw_key).decrypt(envelope.iv, envelope.ciphertext, None)
        if algo is CipherAlgorithm.CHACHA20_POLY1305:
            return ChaCha20Poly1305(raw_key).decrypt(envelope.iv, envelope.ciphertext, None)
        decryptor = Cipher(algorithms.AES(raw_key), modes.CTR(envelope.iv)).decryptor()
        return decryptor.update(envelope.ciphertext) + decryptor.finalize()
    except InvalidTag as e:
        raise DecryptionError(
            "Authentication failed (wrong key or tampered data)",
            algorithm=algo.value,
            reason="authentication"
        ) from e


class SymmetricCipher:
    """
    Chiffreur injectable dans le pipeline, lié à une ``EncryptionConfig``.

    Example:
        >>> cipher = SymmetricCipher(EncryptionConfig(enabled=True))
        >>> envelope = cipher.encrypt(b"secret")
        >>> cipher.decrypt(envelope, envelope.key_material)
        b'secret'
    """

    def __init__(self, config: Optional[EncryptionConfig] = None):
        self.config = config or EncryptionConfig()

    @property
    def algorithm(self) -> CipherAlgorithm:
        return self.config.algorithm

    def encrypt(self, plaintext: bytes, key: Optional[KeyInput] = None) -> EncryptionEnvelope:
        return encrypt(plaintext, key, self.config.algorithm, self.config.key_size)

    def decrypt(self, envelope: EncryptionEnvelope, key: KeyInput) -> bytes:
        return decrypt(envelope, key)
