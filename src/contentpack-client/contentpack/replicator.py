"""
Réplication par copies complètes du jeu de pièces.

Il ne s'agit pas de codes d'effacement: récupérer la pièce ``i`` exige
qu'au moins une des ``factor`` copies soit intacte. La réplication
protège contre la perte ou la corruption de pièces individuelles, pas
contre la perte d'un tour de réplication entier.

Example:
    >>> from contentpack.replicator import make_pieces, replicate
    >>> pieces = replicate(make_pieces([b"ab", b"c"]), factor=2)
    >>> [p.index for p in pieces]
    [0, 1, 2, 3]
    >>> pieces[2].data
    b'ab'
"""

from typing import Callable, List, Sequence

from .checksum import compute_checksum
from .models import Piece


def make_pieces(chunks: Sequence[bytes],
                checksum: Callable[[bytes], str] = compute_checksum) -> List[Piece]:
    """
    Transforme les sorties du chunker en pièces primaires indexées.

    Args:
        chunks: Pièces brutes dans l'ordre
        checksum: Fonction d'empreinte

    Returns:
        Pièces d'index 0..len(chunks)-1 avec leur empreinte
    """
    return [
        Piece(index=i, data=chunk, checksum=checksum(chunk))
        for i, chunk in enumerate(chunks)
    ]


def replicate(pieces: Sequence[Piece], factor: int) -> List[Piece]:
    """
    Ajoute ``factor - 1`` copies complètes des pièces primaires.

    La copie de la pièce ``i`` au tour ``r`` reçoit l'index
    ``len(pieces) * r + i`` et conserve l'empreinte de sa primaire.

    Args:
        pieces: Pièces primaires (index 0..n-1)
        factor: Nombre total de copies (1 = aucune réplique)

    Returns:
        Primaires suivies des répliques

    Raises:
        ValueError: Si factor < 1
    """
    if factor < 1:
        raise ValueError(f"Replication factor must be >= 1, got {factor}")

    piece_count = len(pieces)
    result = list(pieces)
    for round_number in range(1, factor):
        for piece in pieces:
            result.append(Piece(
                index=piece_count * round_number + piece.index,
                data=piece.data,
                checksum=piece.checksum,
            ))
    return result
