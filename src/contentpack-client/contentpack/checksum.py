"""Empreintes SHA-256 pour la vérification d'intégrité des pièces et des objets."""

import hashlib


def compute_checksum(data: bytes) -> str:
    """
    Calcule l'empreinte SHA-256 d'une séquence d'octets.

    Args:
        data: Données à hacher

    Returns:
        Hash hexadécimal

    Example:
        >>> compute_checksum(b'test data')
        '916f0027a575074ce72a331777c3478d6513f786a591bd892da1a577bf2335f9'
    """
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected: str) -> bool:
    """Vérifie que ``data`` correspond à l'empreinte attendue."""
    return compute_checksum(data) == expected


class IncrementalChecksum:
    """
    Calcul incrémental d'une empreinte SHA-256 pour des données en flux.

    Usage:
        checksum = IncrementalChecksum()
        checksum.update(piece1)
        checksum.update(piece2)
        digest = checksum.finalize()
    """

    def __init__(self):
        self._hasher = hashlib.sha256()
        self._finalized = False

    def update(self, data: bytes) -> None:
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._hasher.update(data)

    def finalize(self) -> str:
        """Termine le calcul et retourne l'empreinte hexadécimale."""
        self._finalized = True
        return self._hasher.hexdigest()
