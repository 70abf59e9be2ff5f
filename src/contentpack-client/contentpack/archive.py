"""
Codec d'archive multi-objets pour l'export et l'import en masse.

Format binaire:
    [u32 big-endian longueur][métadonnées JSON]
    [u32 big-endian longueur][octets de rootIds[0]]
    ...

Le flux complet peut être compressé en gzip après coup; la compression se
détecte aux deux premiers octets ``1f 8b`` et ne fait pas partie du
découpage en enregistrements.

Le codec ne revérifie pas les octets des objets: c'est à l'appelant de le
faire s'il le souhaite.

Example:
    >>> from contentpack.archive import encode_records, decode_records
    >>> decode_records(encode_records([b"meta", b"obj"]))
    [b'meta', b'obj']
"""

import gzip
import json
import logging
import struct
import zlib
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .checksum import compute_checksum
from .config import ArchiveConfig
from .exceptions import ArchiveParseError, ArchiveSizeError
from .models import (
    ARCHIVE_VERSION, ArchiveMetadata, DatastoreItem, ImportResult, now_ms
)
from .store import ContentStore

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'
LENGTH_PREFIX = struct.Struct('>I')
MAX_RECORD_SIZE = 0xFFFFFFFF


# =============================================================================
# ENREGISTREMENTS
# =============================================================================

def encode_records(payloads: Iterable[bytes]) -> bytes:
    """
    Concatène des enregistrements préfixés par leur longueur.

    Raises:
        ArchiveSizeError: Si un enregistrement dépasse 4 GiB - 1
    """
    out = bytearray()
    for payload in payloads:
        if len(payload) > MAX_RECORD_SIZE:
            raise ArchiveSizeError(
                "Record too large for archive framing",
                {"size": len(payload)}
            )
        out += LENGTH_PREFIX.pack(len(payload))
        out += payload
    return bytes(out)


def decode_records(data: bytes) -> List[bytes]:
    """
    Lit la suite d'enregistrements d'une archive décompressée.

    Raises:
        ArchiveParseError: Préfixe tronqué ou longueur déclarée supérieure
            aux octets restants
    """
    records = []
    offset = 0
    view = memoryview(data)
    while offset < len(data):
        if offset + LENGTH_PREFIX.size > len(data):
            raise ArchiveParseError(
                "Truncated record length prefix",
                offset=offset,
                record=len(records)
            )
        (length,) = LENGTH_PREFIX.unpack_from(data, offset)
        start = offset + LENGTH_PREFIX.size
        end = start + length
        if end > len(data):
            raise ArchiveParseError(
                "Truncated record",
                {"declared": length, "remaining": len(data) - start},
                offset=offset,
                record=len(records)
            )
        records.append(bytes(view[start:end]))
        offset = end
    return records


def is_compressed(data: bytes) -> bool:
    return data[:2] == GZIP_MAGIC


def compress(data: bytes) -> bytes:
    """Compression gzip déterministe (mtime fixé à 0)."""
    return gzip.compress(data, mtime=0)


def decompress(data: bytes) -> bytes:
    """
    Raises:
        ArchiveParseError: Si le flux gzip est invalide ou tronqué
    """
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise ArchiveParseError(f"Failed to decompress archive: {e}", offset=0) from e


def metadata_checksum(root_ids: Sequence[str],
                      checksum: Callable[[bytes], str] = compute_checksum) -> str:
    """Empreinte des identifiants concaténés, dans l'ordre."""
    return checksum(''.join(root_ids).encode('utf-8'))


# =============================================================================
# ARCHIVE
# =============================================================================

@dataclass
class ParsedArchive:
    """
    Archive décodée.

    Attributes:
        metadata: Bloc de métadonnées
        payloads: Octets des objets, ``payloads[i]`` correspondant à ``rootIds[i]``
        compressed: L'archive lue était compressée
    """
    metadata: ArchiveMetadata
    payloads: List[bytes] = field(default_factory=list)
    compressed: bool = False

    @property
    def objects(self) -> Dict[str, bytes]:
        """Objets indexés par identifiant."""
        return dict(zip(self.metadata.root_ids, self.payloads))


def encode_archive(metadata: ArchiveMetadata, payloads: Sequence[bytes],
                   compress_output: bool = False) -> bytes:
    """
    Sérialise une archive.

    Raises:
        ArchiveSizeError: Si le nombre d'objets ne correspond pas aux métadonnées
    """
    if len(payloads) != len(metadata.root_ids):
        raise ArchiveSizeError(
            "Payload count does not match rootIds",
            {"payloads": len(payloads), "root_ids": len(metadata.root_ids)}
        )
    data = encode_records([metadata.to_bytes(), *payloads])
    return compress(data) if compress_output else data


def decode_archive(data: bytes) -> ParsedArchive:
    """
    Décode une archive, compressée ou non.

    Raises:
        ArchiveParseError: Archive vide, tronquée, métadonnées invalides ou
            nombre d'enregistrements incohérent
    """
    if not data:
        raise ArchiveParseError("Empty archive", offset=0)

    compressed = is_compressed(data)
    if compressed:
        data = decompress(data)

    records = decode_records(data)
    if not records:
        raise ArchiveParseError("Archive has no metadata record", offset=0, record=0)

    try:
        metadata = ArchiveMetadata.from_dict(json.loads(records[0].decode('utf-8')))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ArchiveParseError("Metadata record is not valid JSON", record=0) from e
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ArchiveParseError(f"Invalid archive metadata: {e}", record=0) from e

    payloads = records[1:]
    if metadata.item_count != len(metadata.root_ids) or len(payloads) != len(metadata.root_ids):
        raise ArchiveParseError(
            "Record count does not match metadata",
            {"item_count": metadata.item_count,
             "root_ids": len(metadata.root_ids),
             "records": len(payloads)}
        )
    return ParsedArchive(metadata=metadata, payloads=payloads, compressed=compressed)


# =============================================================================
# CODEC LIÉ AU STORE
# =============================================================================

class ArchiveCodec:
    """
    Export et import d'archives contre un store de contenu.

    Attributes:
        store: Store d'où proviennent (et où retournent) les objets
        config: Configuration d'archive
        checksum: Fonction d'empreinte des métadonnées
        logger: Logger pour le debug

    Example:
        >>> from contentpack.store import MemoryContentStore
        >>> codec = ArchiveCodec(MemoryContentStore())
        >>> codec.config.compression
        False
    """

    def __init__(self, store: ContentStore, config: Optional[ArchiveConfig] = None,
                 checksum: Callable[[bytes], str] = compute_checksum,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.config = config or ArchiveConfig()
        self.checksum = checksum
        self.logger = logger or logging.getLogger(__name__)

    def select(self, items: Sequence[Union[DatastoreItem, str]]) -> List[str]:
        """
        Identifiants retenus pour l'export.

        Les ``DatastoreItem`` non vérifiés sont exclus sauf si
        ``config.include_unverified``; un identifiant brut est toujours inclus.

        Raises:
            ArchiveSizeError: Si aucune entrée n'est retenue
        """
        selected = []
        for item in items:
            if isinstance(item, DatastoreItem):
                if not item.verified and not self.config.include_unverified:
                    self.logger.debug(f"Objet non vérifié exclu de l'export: {item.name}")
                    continue
                selected.append(item.content_id)
            else:
                selected.append(item)
        if not selected:
            raise ArchiveSizeError("No items to export", {"requested": len(items)})
        return selected

    def check_size(self, total_size: int) -> None:
        """
        Raises:
            ArchiveSizeError: Si ``total_size`` dépasse ``config.max_size``
        """
        if total_size > self.config.max_size:
            raise ArchiveSizeError(
                "Archive exceeds maximum size",
                {"total_size": total_size, "max_size": self.config.max_size}
            )

    def build(self, root_ids: Sequence[str], payloads: Sequence[bytes],
              compress_output: Optional[bool] = None,
              encryption: Optional[Dict[str, str]] = None) -> bytes:
        """
        Assemble une archive à partir d'objets déjà récupérés.

        ``encryption`` associe à chaque objet chiffré son algorithme, pour
        que l'import restaure l'enregistrement.

        Raises:
            ArchiveSizeError: Aucun objet, ou taille au-delà de la limite
        """
        if not root_ids:
            raise ArchiveSizeError("No items to export")
        total_size = sum(len(p) for p in payloads)
        self.check_size(total_size)

        metadata = ArchiveMetadata(
            root_ids=list(root_ids),
            total_size=total_size,
            checksum=metadata_checksum(root_ids, self.checksum),
            version=ARCHIVE_VERSION,
            encryption=dict(encryption or {}),
        )
        if compress_output is None:
            compress_output = self.config.compression
        archive = encode_archive(metadata, payloads, compress_output)

        self.logger.info(
            f"Archive construite: {len(root_ids)} objets, {total_size} bytes"
            f"{' (gzip)' if compress_output else ''}"
        )
        return archive

    def imported_item(self, root_id: str, size: int,
                      algorithm: Optional[str] = None) -> DatastoreItem:
        """Enregistrement minimal d'un objet importé inconnu localement."""
        return DatastoreItem(
            content_id=root_id,
            name=f"imported-{root_id[:8]}",
            size=size,
            encrypted=algorithm is not None,
            encryption_algorithm=algorithm,
            verified=False,
            metadata={"imported": True, "importDate": now_ms()},
        )

    async def export(self, items: Sequence[Union[DatastoreItem, str]],
                     compress_output: Optional[bool] = None) -> bytes:
        """
        Construit une archive des objets du store, lus tels quels par identifiant.

        Args:
            items: Enregistrements ou identifiants de contenu
            compress_output: Force ou désactive la compression (défaut: config)

        Returns:
            Octets de l'archive

        Raises:
            ArchiveSizeError: Aucune entrée sélectionnée ou taille au-delà de la limite
            NotFoundError: Si un objet est absent du store
        """
        root_ids = self.select(items)

        payloads = []
        total_size = 0
        for content_id in root_ids:
            payload = await self.store.get(content_id)
            total_size += len(payload)
            self.check_size(total_size)
            payloads.append(payload)

        return self.build(root_ids, payloads, compress_output)

    def encode(self, metadata: ArchiveMetadata, payloads: Sequence[bytes],
               compress_output: bool = False) -> bytes:
        return encode_archive(metadata, payloads, compress_output)

    def parse(self, data: bytes) -> ParsedArchive:
        return decode_archive(data)

    def validate(self, data: bytes) -> Tuple[bool, List[str]]:
        """
        Vérifie une archive sans lever d'exception.

        Returns:
            (valide, liste des erreurs lisibles)
        """
        errors = []
        if not data:
            return False, ["Archive is empty"]
        try:
            parsed = decode_archive(data)
        except ArchiveParseError as e:
            return False, [str(e)]

        metadata = parsed.metadata
        if not metadata.version:
            errors.append("Missing archive version")
        if not metadata.root_ids:
            errors.append("Archive has no root ids")
        if metadata.checksum and metadata.checksum != metadata_checksum(metadata.root_ids, self.checksum):
            errors.append("Metadata checksum does not match root ids")
        actual_size = sum(len(p) for p in parsed.payloads)
        if metadata.total_size != actual_size:
            errors.append(
                f"Total size mismatch: declared {metadata.total_size}, found {actual_size}"
            )
        return not errors, errors

    async def import_archive(self, data: bytes,
                             existing_items: Iterable[DatastoreItem] = ()) -> ImportResult:
        """
        Importe une archive dans le store.

        Un objet dont l'identifiant est déjà connu renvoie l'enregistrement
        existant, inchangé, dans ``duplicates``. Les autres reçoivent un
        enregistrement minimal non vérifié.

        Raises:
            ArchiveParseError: Si l'archive est illisible
        """
        parsed = decode_archive(data)
        known: Dict[str, DatastoreItem] = {item.content_id: item for item in existing_items}
        result = ImportResult()

        expected = metadata_checksum(parsed.metadata.root_ids, self.checksum)
        if parsed.metadata.checksum and parsed.metadata.checksum != expected:
            result.warnings.append("Archive metadata checksum does not match its root ids")

        for root_id, payload in zip(parsed.metadata.root_ids, parsed.payloads):
            if root_id in known:
                result.duplicates.append(known[root_id])
                continue

            stored_id = await self.store.put(payload)
            if stored_id != root_id:
                result.warnings.append(
                    f"Object {root_id[:16]} stored under a different id {stored_id[:16]}"
                )

            item = self.imported_item(
                root_id, len(payload), parsed.metadata.encryption.get(root_id)
            )
            known[root_id] = item
            result.items.append(item)

        if result.duplicates:
            result.warnings.append(f"{len(result.duplicates)} objects already present")

        self.logger.info(
            f"Archive importée: {len(result.items)} nouveaux objets, "
            f"{len(result.duplicates)} doublons"
        )
        return result
