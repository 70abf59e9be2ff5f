"""
Orchestration upload / download / export / import.

Upload:
    preparing -> (encrypting)? -> (chunking -> replicating -> storing-pieces)?
    -> storing-manifest -> done

Download:
    fetching-manifest -> reconstructing -> (decrypting)? -> done

L'état ``error`` est atteignable depuis chaque étape et porte l'exception
d'origine, qui est ensuite relevée telle quelle.

Example:
    >>> import asyncio
    >>> from contentpack.pipeline import PackagingPipeline
    >>> from contentpack.store import MemoryContentStore
    >>> async def main():
    ...     pipeline = PackagingPipeline(MemoryContentStore())
    ...     result = await pipeline.upload(b"hello", name="hello.txt")
    ...     return await pipeline.download(result.item)
    >>> asyncio.run(main())
    b'hello'
"""

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .archive import ArchiveCodec
from .checksum import compute_checksum
from .chunker import split
from .cipher import EncryptionEnvelope, KeyInput, SymmetricCipher, encode_key
from .config import CipherAlgorithm, PackagingConfig, get_config
from .exceptions import DecryptionError
from .manifest import attach_content_ids, build_direct_manifest, build_manifest
from .models import DatastoreItem, ImportResult, Manifest, Piece, UploadResult
from .reconstructor import Reconstructor
from .replicator import make_pieces, replicate
from .store import ContentStore, FileContentStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class UploadStage(str, Enum):
    PREPARING = "preparing"
    ENCRYPTING = "encrypting"
    CHUNKING = "chunking"
    REPLICATING = "replicating"
    STORING_PIECES = "storing-pieces"
    STORING_MANIFEST = "storing-manifest"
    DONE = "done"
    ERROR = "error"


class DownloadStage(str, Enum):
    FETCHING_MANIFEST = "fetching-manifest"
    RECONSTRUCTING = "reconstructing"
    DECRYPTING = "decrypting"
    DONE = "done"
    ERROR = "error"


@dataclass
class PipelineState:
    """Dernière étape atteinte et, en cas d'échec, l'exception d'origine."""
    stage: str
    error: Optional[BaseException] = None


def content_type_for(mime_type: str) -> str:
    """Catégorie grossière d'un type MIME."""
    major = mime_type.split('/', 1)[0]
    if major in ('text', 'image', 'video', 'audio'):
        return major
    return 'binary'


class PackagingPipeline:
    """
    Pipeline de packaging lié à un store, une fonction d'empreinte et un chiffreur.

    Aucun état global: toutes les dépendances sont injectées.

    Attributes:
        store: Store de contenu
        config: Configuration complète
        checksum: Fonction d'empreinte
        cipher: Chiffreur symétrique
        reconstructor: Reconstructeur partageant store et empreinte
        archive: Codec d'archive partageant le store
        state: Dernier état atteint, partagé par toutes les opérations
        logger: Logger pour le debug

    ``state`` n'a de sens que pour une opération à la fois: des appels
    concurrents sur la même instance l'écrasent mutuellement. Le suivi
    par opération passe par le callback ``progress``.
    """

    def __init__(self, store: Optional[ContentStore] = None,
                 config: Optional[PackagingConfig] = None,
                 checksum: Callable[[bytes], str] = compute_checksum,
                 cipher: Optional[SymmetricCipher] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config or get_config()
        self.checksum = checksum
        self.cipher = cipher or SymmetricCipher(self.config.encryption)
        self.logger = logger or logging.getLogger(__name__)
        if store is None:
            store = FileContentStore(self.config.store_dir, self.logger)
        self.store = store
        self.reconstructor = Reconstructor(self.store, checksum, self.logger)
        self.archive = ArchiveCodec(self.store, self.config.archive, checksum, self.logger)
        self.state = PipelineState(stage=UploadStage.DONE.value)

    # =========================================================================
    # ÉTATS
    # =========================================================================

    def _enter(self, stage: Enum, progress: Optional[ProgressCallback]) -> None:
        self.state = PipelineState(stage=stage.value)
        self.logger.debug(f"Étape: {stage.value}")
        if progress is None:
            return
        try:
            progress(stage.value)
        except Exception as e:
            self.logger.warning(f"Callback de progression en échec ({stage.value}): {e}")

    def _fail(self, error: BaseException, stage: Enum,
              progress: Optional[ProgressCallback]) -> None:
        failed_at = self.state.stage
        self._enter(stage, progress)
        self.state.error = error
        self.logger.error(f"Échec à l'étape {failed_at}: {error}")

    # =========================================================================
    # UPLOAD
    # =========================================================================

    async def _store_pieces(self, pieces: Sequence[Piece]) -> List[str]:
        """
        Écrit les pièces en parallèle.

        Le premier échec annule les écritures en cours et est relevé tel quel.
        Les pièces déjà écrites restent dans le store.
        """
        tasks = [asyncio.ensure_future(self.store.put(piece.data)) for piece in pieces]
        if not tasks:
            return []
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if task.exception() is not None:
                for other in pending:
                    other.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)
                raise task.exception()
        return [task.result() for task in tasks]

    async def _package(self, payload: bytes,
                       progress: Optional[ProgressCallback] = None) -> Manifest:
        """Découpe (si nécessaire) et stocke ``payload``; retourne le manifeste complet."""
        sharding = self.config.sharding

        if not sharding.enabled or len(payload) <= sharding.piece_size:
            object_id = await self.store.put(payload) if payload else None
            return build_direct_manifest(payload, object_id, sharding.piece_size, self.checksum)

        self._enter(UploadStage.CHUNKING, progress)
        chunks = split(payload, sharding.piece_size, sharding.max_pieces)
        pieces = make_pieces(chunks, self.checksum)

        self._enter(UploadStage.REPLICATING, progress)
        pieces = replicate(pieces, sharding.replication_factor)
        manifest = build_manifest(
            payload, pieces, sharding.piece_size, sharding.replication_factor, self.checksum
        )

        self._enter(UploadStage.STORING_PIECES, progress)
        content_ids = await self._store_pieces(pieces)
        self.logger.debug(f"{len(content_ids)} pièces stockées")
        return attach_content_ids(manifest, content_ids)

    async def upload(self, data: bytes, name: str = '',
                     encrypt: Optional[bool] = None,
                     key: Optional[KeyInput] = None,
                     mime_type: Optional[str] = None,
                     progress: Optional[ProgressCallback] = None) -> UploadResult:
        """
        Stocke un objet et son manifeste.

        Args:
            data: Octets de l'objet
            name: Nom lisible
            encrypt: Force ou désactive le chiffrement (défaut: config)
            key: Clé à utiliser; générée si absente et chiffrement actif
            mime_type: Type MIME (deviné depuis ``name`` si absent)
            progress: Callback recevant le nom de chaque étape

        Returns:
            UploadResult avec l'enregistrement, le manifeste et la clé

        Raises:
            TooManyPiecesError: Avant toute écriture si l'objet a trop de pièces
            ContentStoreError: Si une écriture échoue (upload abandonné)
        """
        self._enter(UploadStage.PREPARING, progress)
        try:
            do_encrypt = self.config.encryption.enabled if encrypt is None else encrypt
            if mime_type is None:
                mime_type = mimetypes.guess_type(name)[0] or 'application/octet-stream'

            self.logger.info(
                f"Upload: {name or '<sans nom>'} ({len(data)} bytes"
                f"{', chiffré' if do_encrypt else ''})"
            )

            payload = data
            encryption_key = None
            algorithm = None
            if do_encrypt:
                self._enter(UploadStage.ENCRYPTING, progress)
                envelope = self.cipher.encrypt(data, key)
                if envelope.key_material is not None:
                    encryption_key = envelope.key_material
                elif isinstance(key, bytes):
                    encryption_key = encode_key(key)
                else:
                    encryption_key = key
                algorithm = envelope.algorithm.value
                payload = envelope.to_bytes()

            manifest = await self._package(payload, progress)
            sharded = manifest.replication_factor > 1 or manifest.piece_count > 1

            self._enter(UploadStage.STORING_MANIFEST, progress)
            manifest_id = await self.store.put(manifest.to_bytes())

            item = DatastoreItem(
                content_id=manifest_id,
                name=name,
                size=len(data),
                mime_type=mime_type,
                content_type=content_type_for(mime_type),
                encrypted=do_encrypt,
                sharded=sharded,
                piece_count=manifest.piece_count if sharded else None,
                encryption_algorithm=algorithm,
                verified=True,
            )
        except Exception as e:
            self._fail(e, UploadStage.ERROR, progress)
            raise

        self._enter(UploadStage.DONE, progress)
        self.logger.info(
            f"Upload terminé: manifeste {manifest_id[:16]}..., "
            f"{manifest.piece_count} pièces x{manifest.replication_factor}"
        )
        return UploadResult(
            item=item,
            manifest_id=manifest_id,
            manifest=manifest,
            encryption_key=encryption_key,
        )

    # =========================================================================
    # DOWNLOAD
    # =========================================================================

    @staticmethod
    def manifest_id_of(item: Union[DatastoreItem, str]) -> str:
        """Identifiant du manifeste d'un enregistrement ou d'un identifiant brut."""
        if isinstance(item, DatastoreItem):
            return item.metadata.get('manifestId', item.content_id)
        return item

    async def fetch_manifest(self, manifest_id: str) -> Manifest:
        """
        Raises:
            NotFoundError: Si le manifeste est absent
            MalformedManifestError: Si le manifeste est invalide
        """
        return Manifest.from_bytes(await self.store.get(manifest_id))

    async def download(self, item: Union[DatastoreItem, str],
                       key: Optional[KeyInput] = None,
                       algorithm: Optional[Union[str, CipherAlgorithm]] = None,
                       progress: Optional[ProgressCallback] = None) -> bytes:
        """
        Récupère, vérifie et déchiffre un objet.

        Le déchiffrement a lieu si ``key`` est fournie, ou si
        ``item.encrypted`` l'exige (``DecryptionError`` sans clé).
        L'algorithme vient de ``algorithm``, puis de
        ``item.encryption_algorithm``, puis de la configuration.

        Raises:
            NotFoundError: Si le manifeste, ou une pièce sans réplique, est absent
            MalformedManifestError: Si le manifeste est invalide
            ShardRecoveryError: Si une pièce est irrécupérable
            ManifestIntegrityError: Si l'objet reconstruit ne correspond pas
            DecryptionError: Clé absente ou invalide, données altérées
        """
        manifest_id = self.manifest_id_of(item)
        do_decrypt = key is not None
        if isinstance(item, DatastoreItem):
            do_decrypt = do_decrypt or item.encrypted
            algorithm = algorithm or item.encryption_algorithm
        algorithm = algorithm or self.config.encryption.algorithm

        self._enter(DownloadStage.FETCHING_MANIFEST, progress)
        try:
            manifest = await self.fetch_manifest(manifest_id)

            self._enter(DownloadStage.RECONSTRUCTING, progress)
            payload = await self.reconstructor.reconstruct(manifest)

            if do_decrypt:
                self._enter(DownloadStage.DECRYPTING, progress)
                if key is None:
                    raise DecryptionError("Missing decryption key", reason="missing_key")
                envelope = EncryptionEnvelope.from_bytes(payload, algorithm)
                payload = self.cipher.decrypt(envelope, key)
        except Exception as e:
            self._fail(e, DownloadStage.ERROR, progress)
            raise

        self._enter(DownloadStage.DONE, progress)
        if isinstance(item, DatastoreItem):
            item.download_count += 1
        self.logger.info(f"Download terminé: {manifest_id[:16]}... ({len(payload)} bytes)")
        return payload

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    async def export_archive(self, items: Sequence[Union[DatastoreItem, str]],
                             compress_output: Optional[bool] = None) -> bytes:
        """
        Exporte des objets reconstruits et vérifiés dans une archive.

        ``rootIds`` contient l'identifiant de chaque entrée; chaque
        enregistrement contient les octets stockés de l'objet (encore
        chiffrés si l'objet l'était), pas ses pièces.

        Raises:
            ArchiveSizeError: Aucune entrée sélectionnée ou archive trop grande
            NotFoundError, ShardRecoveryError, ManifestIntegrityError:
                Si un objet ne peut pas être reconstruit
        """
        by_id = {self.archive_id_of(i): i for i in items}
        root_ids = self.archive.select(items)

        payloads = []
        total_size = 0
        for root_id in root_ids:
            manifest = await self.fetch_manifest(self.manifest_id_of(by_id[root_id]))
            payload = await self.reconstructor.reconstruct(manifest)
            total_size += len(payload)
            self.archive.check_size(total_size)
            payloads.append(payload)

        encryption = {
            root_id: (by_id[root_id].encryption_algorithm
                      or self.config.encryption.algorithm.value)
            for root_id in root_ids
            if isinstance(by_id[root_id], DatastoreItem) and by_id[root_id].encrypted
        }
        return self.archive.build(root_ids, payloads, compress_output, encryption)

    @staticmethod
    def archive_id_of(item: Union[DatastoreItem, str]) -> str:
        return item.content_id if isinstance(item, DatastoreItem) else item

    async def import_archive(self, data: bytes,
                             existing_items: Iterable[DatastoreItem] = ()) -> ImportResult:
        """
        Importe une archive produite par ``export_archive``.

        Chaque objet inconnu est restocké (découpé selon la configuration)
        sous un nouveau manifeste, référencé par ``metadata['manifestId']``;
        l'enregistrement garde l'identifiant d'origine pour la déduplication.

        Raises:
            ArchiveParseError: Si l'archive est illisible
        """
        parsed = self.archive.parse(data)
        known = {item.content_id: item for item in existing_items}
        result = ImportResult()

        for root_id, payload in zip(parsed.metadata.root_ids, parsed.payloads):
            if root_id in known:
                result.duplicates.append(known[root_id])
                continue

            manifest = await self._package(payload)
            manifest_id = await self.store.put(manifest.to_bytes())

            item = self.archive.imported_item(
                root_id, len(payload), parsed.metadata.encryption.get(root_id)
            )
            item.metadata['manifestId'] = manifest_id
            known[root_id] = item
            result.items.append(item)

        if result.duplicates:
            result.warnings.append(f"{len(result.duplicates)} objects already present")

        self.logger.info(
            f"Import terminé: {len(result.items)} nouveaux objets, "
            f"{len(result.duplicates)} doublons"
        )
        return result
