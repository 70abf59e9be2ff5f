"""
Reconstruction et vérification d'un objet depuis son manifeste.

Les pièces primaires sont récupérées en parallèle. Une réplique n'est
demandée qu'après l'échec de la primaire correspondante (absence ou
empreinte incorrecte). L'objet concaténé est ensuite comparé à
``originalChecksum``.

Example:
    >>> from contentpack.store import MemoryContentStore
    >>> from contentpack.reconstructor import Reconstructor
    >>> reconstructor = Reconstructor(MemoryContentStore())
    >>> # data = await reconstructor.reconstruct(manifest)
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from .checksum import compute_checksum
from .exceptions import (
    ContentStoreError, ManifestIntegrityError, NotFoundError, ShardRecoveryError
)
from .models import Manifest, PieceInfo, VerificationReport
from .store import ContentStore

logger = logging.getLogger(__name__)


class Reconstructor:
    """
    Reconstructeur lié à un store et à une fonction d'empreinte.

    Attributes:
        store: Store de contenu
        checksum: Fonction d'empreinte
        logger: Logger pour le debug
    """

    def __init__(self, store: ContentStore,
                 checksum: Callable[[bytes], str] = compute_checksum,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.checksum = checksum
        self.logger = logger or logging.getLogger(__name__)

    async def _fetch(self, info: PieceInfo) -> bytes:
        if not info.content_id:
            raise NotFoundError("Piece has no content id", {"index": info.index})
        return await self.store.get(info.content_id)

    async def _fetch_verified(self, manifest: Manifest, index: int) -> bytes:
        """
        Récupère la pièce primaire ``index`` ou, à défaut, une réplique valide.

        Une lecture en échec compte comme une empreinte incorrecte et passe
        au tour suivant.

        Raises:
            NotFoundError: Si la pièce est absente et sans réplique
            ShardRecoveryError: Si aucune copie ne correspond à l'empreinte
        """
        expected = manifest.pieces[index].checksum
        last_failure: Optional[ContentStoreError] = None

        for round_number in range(manifest.replication_factor):
            info = manifest.replica(index, round_number)
            try:
                data = await self._fetch(info)
            except ContentStoreError as e:
                last_failure = e
                self.logger.debug(f"Lecture de la pièce {info.index} en échec: {e}")
                continue

            if self.checksum(data) == expected:
                if round_number > 0:
                    self.logger.warning(
                        f"Pièce {index} récupérée depuis la réplique {info.index} "
                        f"(tour {round_number})"
                    )
                return data
            self.logger.debug(f"Empreinte invalide pour la pièce {info.index}")

        if manifest.replication_factor == 1 and isinstance(last_failure, NotFoundError):
            raise last_failure

        error = ShardRecoveryError(
            "Piece could not be recovered",
            index=index,
            expected_checksum=expected,
            attempts=manifest.replication_factor
        )
        if last_failure is not None:
            raise error from last_failure
        raise error

    async def _fetch_all(self, manifest: Manifest) -> List[bytes]:
        """
        Récupère toutes les pièces en parallèle, dans l'ordre des index.

        Le premier échec annule les lectures en cours; l'erreur de plus
        petit index parmi celles déjà terminées est relevée.
        """
        tasks = [
            asyncio.ensure_future(self._fetch_verified(manifest, i))
            for i in range(manifest.piece_count)
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [task for task in tasks if task in done and task.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            raise failed[0].exception()
        return [task.result() for task in tasks]

    async def reconstruct(self, manifest: Manifest) -> bytes:
        """
        Reconstruit l'objet décrit par ``manifest``.

        Étapes:
        1. Validation structurelle du manifeste (aucune lecture avant)
        2. Récupération parallèle des primaires, repli sur les répliques
        3. Concaténation dans l'ordre des index
        4. Vérification de l'empreinte de l'objet complet

        Args:
            manifest: Manifeste de l'objet

        Returns:
            Octets vérifiés de l'objet

        Raises:
            MalformedManifestError: Si le manifeste viole un invariant
            NotFoundError: Si une pièce sans réplique est absente du store
            ShardRecoveryError: Si une pièce et toutes ses répliques sont invalides
            ManifestIntegrityError: Si l'objet complet ne correspond pas au manifeste
        """
        manifest.validate()

        if manifest.piece_count == 0:
            data = b""
        else:
            self.logger.info(
                f"Reconstruction: {manifest.piece_count} pièces "
                f"(réplication x{manifest.replication_factor}, {manifest.original_size} bytes)"
            )
            data = b"".join(await self._fetch_all(manifest))

        actual = self.checksum(data)
        if actual != manifest.original_checksum:
            raise ManifestIntegrityError(
                "Reconstructed object checksum mismatch",
                {"size": len(data)},
                expected_checksum=manifest.original_checksum,
                actual_checksum=actual
            )

        self.logger.info(f"Objet reconstruit avec succès ({len(data)} bytes)")
        return data

    async def _check_copy(self, info: PieceInfo, expected: str) -> Tuple[bool, bool]:
        """Retourne (présente, valide) pour une copie."""
        try:
            data = await self._fetch(info)
        except ContentStoreError:
            return False, False
        return True, self.checksum(data) == expected

    async def _verify_piece(self, manifest: Manifest, index: int) -> Tuple[int, str]:
        expected = manifest.pieces[index].checksum
        present, valid = await self._check_copy(manifest.pieces[index], expected)
        if valid:
            return index, 'ok'
        status = 'corrupted' if present else 'missing'
        for round_number in range(1, manifest.replication_factor):
            replica = manifest.replica(index, round_number)
            _, replica_valid = await self._check_copy(replica, expected)
            if replica_valid:
                return index, f'{status}+recoverable'
        return index, status

    async def verify(self, manifest: Manifest) -> VerificationReport:
        """
        Vérifie toutes les pièces primaires sans lever d'erreur de pièce.

        Returns:
            Bilan des pièces corrompues, manquantes et récupérables

        Raises:
            MalformedManifestError: Si le manifeste viole un invariant
        """
        manifest.validate()
        report = VerificationReport()
        results: List[Tuple[int, str]] = await asyncio.gather(*(
            self._verify_piece(manifest, i) for i in range(manifest.piece_count)
        ))
        for index, status in results:
            if status == 'ok':
                continue
            if status.startswith('corrupted'):
                report.corrupted.append(index)
            else:
                report.missing.append(index)
            if status.endswith('+recoverable'):
                report.recoverable.append(index)

        self.logger.info(
            f"Vérification: {manifest.piece_count} pièces, "
            f"{len(report.corrupted)} corrompues, {len(report.missing)} manquantes, "
            f"{len(report.recoverable)} récupérables"
        )
        return report


async def reconstruct(manifest: Manifest, store: ContentStore,
                      checksum: Callable[[bytes], str] = compute_checksum) -> bytes:
    """Raccourci: reconstruit ``manifest`` depuis ``store``."""
    return await Reconstructor(store, checksum, logger).reconstruct(manifest)
