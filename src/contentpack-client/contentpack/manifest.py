"""
Construction des manifestes.

``originalChecksum`` est calculé sur les octets (éventuellement chiffrés)
avant découpage; chaque ``PieceInfo.checksum`` sur les octets de sa pièce.
Les identifiants de contenu sont attachés une fois les pièces écrites.
"""

from typing import Callable, Optional, Sequence

from .checksum import compute_checksum
from .exceptions import MalformedManifestError
from .models import Manifest, Piece, PieceInfo


def build_manifest(data: bytes, pieces: Sequence[Piece], piece_size: int,
                   replication_factor: int,
                   checksum: Callable[[bytes], str] = compute_checksum) -> Manifest:
    """
    Assemble le manifeste d'un objet découpé, sans identifiants de contenu.

    Args:
        data: Objet complet avant découpage
        pieces: Primaires puis répliques (sortie de ``replicate``)
        piece_size: Taille nominale d'une pièce
        replication_factor: Facteur utilisé par ``replicate``
        checksum: Fonction d'empreinte

    Returns:
        Manifeste validé

    Raises:
        MalformedManifestError: Si les pièces ne respectent pas les invariants
    """
    if replication_factor < 1 or len(pieces) % replication_factor:
        raise MalformedManifestError(
            "Piece list does not match replication factor",
            {"pieces": len(pieces), "replication_factor": replication_factor}
        )
    manifest = Manifest(
        original_size=len(data),
        original_checksum=checksum(data),
        piece_size=piece_size,
        piece_count=len(pieces) // replication_factor,
        replication_factor=replication_factor,
        pieces=[piece.info() for piece in pieces],
    )
    manifest.validate()
    return manifest


def build_direct_manifest(data: bytes, content_id: Optional[str],
                          piece_size: int,
                          checksum: Callable[[bytes], str] = compute_checksum) -> Manifest:
    """
    Manifeste d'un objet stocké sans découpage.

    L'objet entier est l'unique pièce (``pieceCount == 1``,
    ``replicationFactor == 1``) et son identifiant est celui de l'objet.
    Un objet vide donne ``pieceCount == 0``.
    """
    digest = checksum(data)
    pieces = []
    if data:
        pieces.append(PieceInfo(index=0, size=len(data), checksum=digest, content_id=content_id))
    return Manifest(
        original_size=len(data),
        original_checksum=digest,
        piece_size=piece_size,
        piece_count=len(pieces),
        replication_factor=1,
        pieces=pieces,
    )


def attach_content_ids(manifest: Manifest, content_ids: Sequence[str]) -> Manifest:
    """
    Retourne un nouveau manifeste dont chaque pièce porte son identifiant.

    Raises:
        MalformedManifestError: Si le nombre d'identifiants diffère du nombre de pièces
    """
    if len(content_ids) != len(manifest.pieces):
        raise MalformedManifestError(
            "Content id count mismatch",
            {"content_ids": len(content_ids), "pieces": len(manifest.pieces)}
        )
    return Manifest(
        original_size=manifest.original_size,
        original_checksum=manifest.original_checksum,
        piece_size=manifest.piece_size,
        piece_count=manifest.piece_count,
        replication_factor=manifest.replication_factor,
        pieces=[info.with_content_id(cid) for info, cid in zip(manifest.pieces, content_ids)],
        algorithm=manifest.algorithm,
        format_version=manifest.format_version,
        created_at=manifest.created_at,
    )
