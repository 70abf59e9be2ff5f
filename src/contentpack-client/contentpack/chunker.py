"""
Découpage d'une séquence d'octets en pièces de taille fixe.

Le chunker découpe toujours quand il est appelé; c'est le pipeline qui
décide de ne pas découper un objet plus petit qu'une pièce.

Example:
    >>> from contentpack.chunker import split
    >>> split(b"abcdefgh", piece_size=3, max_pieces=10)
    [b'abc', b'def', b'gh']
"""

from typing import List

from .exceptions import TooManyPiecesError

MIN_OPTIMAL_PIECE_SIZE = 256 * 1024
MAX_OPTIMAL_PIECE_SIZE = 32 * 1024 * 1024


def estimate_piece_count(data_size: int, piece_size: int) -> int:
    """
    Nombre de pièces produites pour ``data_size`` bytes.

    Example:
        >>> estimate_piece_count(10, 3)
        4
        >>> estimate_piece_count(0, 3)
        0
    """
    if piece_size < 1:
        raise ValueError(f"piece_size must be >= 1, got {piece_size}")
    return -(-data_size // piece_size)


def split(data: bytes, piece_size: int, max_pieces: int) -> List[bytes]:
    """
    Découpe ``data`` en fenêtres de ``piece_size`` bytes.

    La dernière pièce peut être plus courte. La limite ``max_pieces`` est
    vérifiée avant de produire quoi que ce soit: l'appelant reçoit une
    erreur unique plutôt qu'un découpage partiel.

    Args:
        data: Données à découper (une entrée vide donne une liste vide)
        piece_size: Taille d'une pièce en bytes
        max_pieces: Nombre maximum de pièces

    Returns:
        Liste ordonnée des pièces

    Raises:
        ValueError: Si piece_size < 1
        TooManyPiecesError: Si ceil(len(data) / piece_size) > max_pieces
    """
    piece_count = estimate_piece_count(len(data), piece_size)
    if piece_count > max_pieces:
        raise TooManyPiecesError(
            f"Data would create {piece_count} pieces, maximum is {max_pieces}",
            {"data_size": len(data), "piece_size": piece_size},
            piece_count=piece_count,
            max_pieces=max_pieces
        )

    view = memoryview(data)
    return [
        bytes(view[offset:offset + piece_size])
        for offset in range(0, len(data), piece_size)
    ]


def calculate_optimal_piece_size(data_size: int, max_pieces: int) -> int:
    """
    Calcule une taille de pièce adaptée à un objet.

    La taille vise ``max_pieces`` pièces, bornée entre 256 KiB et 32 MiB,
    puis arrondie à la puissance de deux supérieure.

    Args:
        data_size: Taille de l'objet en bytes
        max_pieces: Nombre maximum de pièces souhaité

    Returns:
        Taille de pièce en bytes

    Example:
        >>> calculate_optimal_piece_size(100 * 1024 * 1024, 10)
        16777216
        >>> calculate_optimal_piece_size(1000, 10)
        262144
    """
    if max_pieces < 1:
        raise ValueError(f"max_pieces must be >= 1, got {max_pieces}")
    piece_size = -(-data_size // max_pieces)
    piece_size = max(piece_size, MIN_OPTIMAL_PIECE_SIZE)
    piece_size = min(piece_size, MAX_OPTIMAL_PIECE_SIZE)
    return 1 << (piece_size - 1).bit_length()
