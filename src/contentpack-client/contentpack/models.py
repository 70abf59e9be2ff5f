"""
Modèles de données pour le pipeline de packaging.

Ce module définit les dataclasses utilisées pour représenter les pièces,
le manifeste d'un objet découpé, les métadonnées d'archive et les
enregistrements d'objets côté client.

Le format JSON du manifeste utilise exactement les noms camelCase
``formatVersion``, ``originalSize``, ``originalChecksum``, ``pieceSize``,
``pieceCount``, ``replicationFactor``, ``algorithm``, ``pieces`` et
``createdAt``; les attributs Python sont en snake_case.

Example:
    >>> from contentpack.models import PieceInfo
    >>> info = PieceInfo(index=0, size=4, checksum="abc")
    >>> info.to_dict()
    {'index': 0, 'size': 4, 'checksum': 'abc'}
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Dict, Any
import json
import time

from .config import ChunkingAlgorithm
from .exceptions import MalformedManifestError

MANIFEST_VERSION = "1.0.0"
SUPPORTED_MANIFEST_VERSIONS = (MANIFEST_VERSION,)

ARCHIVE_VERSION = "1.0.0"


def now_ms() -> int:
    """Horodatage courant en millisecondes depuis l'epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Piece:
    """
    Pièce en mémoire: données et empreinte.

    Produite par le chunker puis dupliquée par le réplicateur. Les
    répliques partagent les mêmes octets et la même empreinte que leur
    primaire; seul ``index`` change.

    Attributes:
        index: Position dans la liste complète (primaires puis répliques)
        data: Octets de la pièce
        checksum: Empreinte SHA-256 des octets
    """
    index: int
    data: bytes
    checksum: str

    @property
    def size(self) -> int:
        return len(self.data)

    def info(self, content_id: Optional[str] = None) -> 'PieceInfo':
        """Retourne la description de cette pièce pour le manifeste."""
        return PieceInfo(
            index=self.index,
            size=self.size,
            checksum=self.checksum,
            content_id=content_id,
        )


@dataclass(frozen=True)
class PieceInfo:
    """
    Description d'une pièce dans un manifeste.

    Attributes:
        index: Index de la pièce (primaires: 0..pieceCount-1)
        size: Taille en bytes
        checksum: Empreinte SHA-256 hexadécimale
        content_id: Identifiant de contenu, renseigné après écriture dans le store
    """
    index: int
    size: int
    checksum: str
    content_id: Optional[str] = None

    def with_content_id(self, content_id: str) -> 'PieceInfo':
        """Retourne une copie portant l'identifiant de contenu."""
        return replace(self, content_id=content_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire pour sérialisation JSON."""
        data = {
            'index': self.index,
            'size': self.size,
            'checksum': self.checksum,
        }
        if self.content_id is not None:
            data['contentId'] = self.content_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PieceInfo':
        """
        Crée une instance depuis un dictionnaire.

        Raises:
            MalformedManifestError: Si un champ obligatoire manque ou est mal typé
        """
        try:
            return cls(
                index=int(data['index']),
                size=int(data['size']),
                checksum=str(data['checksum']),
                content_id=data.get('contentId'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedManifestError(
                f"Invalid piece entry: {e}",
                {"entry": data if isinstance(data, dict) else type(data).__name__}
            ) from e


@dataclass(frozen=True)
class Manifest:
    """
    Description complète d'un objet découpé.

    Le manifeste n'est jamais modifié après l'écriture des pièces: un
    nouvel upload crée un nouveau manifeste.

    Invariants:
        - ``len(pieces) == piece_count * replication_factor``
        - ``pieces[i].index == i`` pour les primaires
        - ``pieces[piece_count*r + i].checksum == pieces[i].checksum``

    Attributes:
        original_size: Taille de l'objet (éventuellement chiffré) en bytes
        original_checksum: Empreinte de l'objet complet avant découpage
        piece_size: Taille nominale d'une pièce
        piece_count: Nombre de pièces primaires
        replication_factor: Nombre de copies du jeu de pièces
        pieces: Primaires puis répliques, dans l'ordre
        algorithm: Stratégie de découpage
        format_version: Version du format de manifeste
        created_at: Horodatage de création (ms)

    Example:
        >>> manifest = Manifest(
        ...     original_size=0,
        ...     original_checksum="e3b0c442...",
        ...     piece_size=1024,
        ...     piece_count=0,
        ...     replication_factor=1,
        ...     pieces=[],
        ... )
        >>> manifest.total_pieces
        0
    """
    original_size: int
    original_checksum: str
    piece_size: int
    piece_count: int
    replication_factor: int
    pieces: List[PieceInfo] = field(default_factory=list)
    algorithm: ChunkingAlgorithm = ChunkingAlgorithm.FIXED_SIZE
    format_version: str = MANIFEST_VERSION
    created_at: int = field(default_factory=now_ms)

    @property
    def total_pieces(self) -> int:
        """Nombre total de pièces attendues (primaires + répliques)."""
        return self.piece_count * self.replication_factor

    @property
    def primary_pieces(self) -> List[PieceInfo]:
        return list(self.pieces[:self.piece_count])

    def replica(self, index: int, round_number: int) -> PieceInfo:
        """Retourne la copie de la pièce ``index`` pour le tour de réplication donné."""
        return self.pieces[self.piece_count * round_number + index]

    def validate(self) -> None:
        """
        Vérifie les invariants structurels.

        Aucune lecture dans le store n'est faite ici: un manifeste invalide
        est rejeté avant toute récupération de pièce.

        Raises:
            MalformedManifestError: Si un invariant est violé
        """
        if self.format_version not in SUPPORTED_MANIFEST_VERSIONS:
            raise MalformedManifestError(
                "Unsupported manifest format version",
                {"format_version": self.format_version}
            )
        if self.piece_count < 0 or self.replication_factor < 1:
            raise MalformedManifestError(
                "Invalid piece count or replication factor",
                {"piece_count": self.piece_count,
                 "replication_factor": self.replication_factor}
            )
        if len(self.pieces) != self.total_pieces:
            raise MalformedManifestError(
                "Piece list length mismatch",
                {"pieces": len(self.pieces), "expected": self.total_pieces}
            )
        for i, piece in enumerate(self.pieces[:self.piece_count]):
            if piece.index != i:
                raise MalformedManifestError(
                    "Primary piece out of order",
                    {"position": i, "index": piece.index}
                )
        for round_number in range(1, self.replication_factor):
            for i in range(self.piece_count):
                copy = self.replica(i, round_number)
                if copy.checksum != self.pieces[i].checksum:
                    raise MalformedManifestError(
                        "Replica checksum differs from primary",
                        {"index": i, "round": round_number}
                    )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convertit en dictionnaire pour sérialisation JSON.

        Returns:
            Dictionnaire sérialisable en JSON
        """
        return {
            'formatVersion': self.format_version,
            'originalSize': self.original_size,
            'originalChecksum': self.original_checksum,
            'pieceSize': self.piece_size,
            'pieceCount': self.piece_count,
            'replicationFactor': self.replication_factor,
            'algorithm': self.algorithm.value,
            'pieces': [p.to_dict() for p in self.pieces],
            'createdAt': self.created_at,
        }

    def to_json(self) -> str:
        """
        Sérialise en JSON.

        Returns:
            Chaîne JSON
        """
        return json.dumps(self.to_dict(), indent=2)

    def to_bytes(self) -> bytes:
        """Sérialise en JSON UTF-8, prêt à être écrit dans le store."""
        return self.to_json().encode('utf-8')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Manifest':
        """
        Crée une instance depuis un dictionnaire.

        Args:
            data: Dictionnaire avec les données

        Returns:
            Instance de Manifest (non validée, voir ``validate``)

        Raises:
            MalformedManifestError: Si un champ obligatoire manque ou est mal typé
        """
        if not isinstance(data, dict):
            raise MalformedManifestError(
                "Manifest must be a JSON object",
                {"type": type(data).__name__}
            )
        try:
            algorithm = ChunkingAlgorithm(data.get('algorithm', ChunkingAlgorithm.FIXED_SIZE.value))
        except ValueError as e:
            raise MalformedManifestError(
                "Unknown chunking algorithm",
                {"algorithm": data.get('algorithm')}
            ) from e
        pieces = data.get('pieces', [])
        if not isinstance(pieces, list):
            raise MalformedManifestError("Manifest pieces must be a list")
        try:
            return cls(
                format_version=str(data['formatVersion']),
                original_size=int(data['originalSize']),
                original_checksum=str(data['originalChecksum']),
                piece_size=int(data['pieceSize']),
                piece_count=int(data['pieceCount']),
                replication_factor=int(data['replicationFactor']),
                algorithm=algorithm,
                pieces=[PieceInfo.from_dict(p) for p in pieces],
                created_at=int(data.get('createdAt', 0)),
            )
        except KeyError as e:
            raise MalformedManifestError(
                "Missing manifest field",
                {"field": e.args[0]}
            ) from e
        except (TypeError, ValueError) as e:
            raise MalformedManifestError(f"Invalid manifest field: {e}") from e

    @classmethod
    def from_json(cls, json_str: str) -> 'Manifest':
        """
        Désérialise et valide un manifeste.

        Args:
            json_str: Chaîne JSON

        Returns:
            Instance de Manifest validée

        Raises:
            MalformedManifestError: JSON invalide, version inconnue ou invariant violé
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MalformedManifestError(
                "Manifest is not valid JSON",
                {"position": e.pos}
            ) from e
        manifest = cls.from_dict(data)
        manifest.validate()
        return manifest

    @classmethod
    def from_bytes(cls, raw: bytes) -> 'Manifest':
        """Désérialise un manifeste lu depuis le store."""
        try:
            text = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedManifestError("Manifest is not valid UTF-8") from e
        return cls.from_json(text)


@dataclass(frozen=True)
class ArchiveMetadata:
    """
    Bloc de métadonnées en tête d'une archive.

    Attributes:
        root_ids: Identifiants des objets, dans l'ordre des enregistrements
        total_size: Somme des tailles des objets
        checksum: Empreinte SHA-256 des identifiants concaténés
        item_count: Nombre d'objets (== len(root_ids))
        version: Version du format d'archive
        created_at: Horodatage de création (ms)
        encryption: Algorithme de chiffrement par identifiant, pour les
            objets exportés chiffrés (absent du JSON si vide)
    """
    root_ids: List[str]
    total_size: int
    checksum: str
    item_count: int = -1
    version: str = ARCHIVE_VERSION
    created_at: int = field(default_factory=now_ms)
    encryption: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.item_count < 0:
            object.__setattr__(self, 'item_count', len(self.root_ids))

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire (ordre des clés fixe)."""
        result = {
            'version': self.version,
            'createdAt': self.created_at,
            'itemCount': self.item_count,
            'totalSize': self.total_size,
            'rootIds': list(self.root_ids),
            'checksum': self.checksum,
        }
        if self.encryption:
            result['encryption'] = dict(self.encryption)
        return result

    def to_bytes(self) -> bytes:
        """Sérialisation JSON compacte et déterministe."""
        return json.dumps(self.to_dict(), separators=(',', ':')).encode('utf-8')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ArchiveMetadata':
        """
        Crée une instance depuis un dictionnaire.

        Raises:
            KeyError, TypeError, ValueError: Si un champ est absent ou invalide
        """
        root_ids = data['rootIds']
        if not isinstance(root_ids, list):
            raise TypeError("rootIds must be a list")
        encryption = data.get('encryption', {})
        if not isinstance(encryption, dict):
            raise TypeError("encryption must be an object")
        return cls(
            version=str(data['version']),
            created_at=int(data['createdAt']),
            item_count=int(data['itemCount']),
            total_size=int(data['totalSize']),
            root_ids=[str(r) for r in root_ids],
            checksum=str(data.get('checksum', '')),
            encryption={str(k): str(v) for k, v in encryption.items()},
        )


@dataclass
class DatastoreItem:
    """
    Enregistrement client décrivant un objet stocké.

    La clé de chiffrement n'est jamais conservée ici: l'appelant la reçoit
    dans ``UploadResult`` et en assure seul la persistance.

    Attributes:
        content_id: Identifiant du manifeste de l'objet (ou identifiant
            d'origine pour un objet importé, voir ``metadata['manifestId']``)
        name: Nom lisible
        size: Taille originale (avant chiffrement) en bytes
        mime_type: Type MIME
        content_type: Catégorie ('text', 'image', 'video', 'audio', 'binary')
        timestamp: Horodatage (ms)
        encrypted: Objet chiffré avant stockage
        sharded: Objet découpé en pièces
        piece_count: Nombre de pièces primaires si découpé
        encryption_algorithm: Algorithme utilisé si chiffré
        pinned: Services d'épinglage ayant confirmé l'objet
        verified: Intégrité vérifiée localement
        download_count: Nombre de téléchargements
        metadata: Informations libres

    Example:
        >>> item = DatastoreItem(content_id="abc", name="notes.txt", size=10)
        >>> item.mime_type
        'application/octet-stream'
    """
    content_id: str
    name: str
    size: int
    mime_type: str = 'application/octet-stream'
    content_type: str = 'binary'
    timestamp: int = field(default_factory=now_ms)
    encrypted: bool = False
    sharded: bool = False
    piece_count: Optional[int] = None
    encryption_algorithm: Optional[str] = None
    pinned: List[str] = field(default_factory=list)
    verified: bool = False
    download_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire."""
        return {
            'contentId': self.content_id,
            'name': self.name,
            'size': self.size,
            'mimeType': self.mime_type,
            'contentType': self.content_type,
            'timestamp': self.timestamp,
            'encrypted': self.encrypted,
            'sharded': self.sharded,
            'pieceCount': self.piece_count,
            'encryptionAlgorithm': self.encryption_algorithm,
            'pinned': list(self.pinned),
            'verified': self.verified,
            'downloadCount': self.download_count,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatastoreItem':
        """Crée une instance depuis un dictionnaire."""
        return cls(
            content_id=data['contentId'],
            name=data.get('name', ''),
            size=data.get('size', 0),
            mime_type=data.get('mimeType', 'application/octet-stream'),
            content_type=data.get('contentType', 'binary'),
            timestamp=data.get('timestamp', now_ms()),
            encrypted=data.get('encrypted', False),
            sharded=data.get('sharded', False),
            piece_count=data.get('pieceCount'),
            encryption_algorithm=data.get('encryptionAlgorithm'),
            pinned=list(data.get('pinned', [])),
            verified=data.get('verified', False),
            download_count=data.get('downloadCount', 0),
            metadata=dict(data.get('metadata', {})),
        )


@dataclass
class UploadResult:
    """
    Résultat d'un upload.

    Attributes:
        item: Enregistrement de l'objet stocké
        manifest_id: Identifiant du manifeste dans le store
        manifest: Manifeste écrit
        encryption_key: Clé générée ou fournie (chaîne opaque), None si non chiffré
    """
    item: DatastoreItem
    manifest_id: str
    manifest: Manifest
    encryption_key: Optional[str] = None


@dataclass
class ImportResult:
    """
    Résultat de l'import d'une archive.

    Attributes:
        items: Enregistrements nouvellement créés
        duplicates: Enregistrements existants retrouvés par identifiant (inchangés)
        warnings: Messages lisibles pour l'appelant
    """
    items: List[DatastoreItem] = field(default_factory=list)
    duplicates: List[DatastoreItem] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.items) or bool(self.duplicates)


@dataclass
class VerificationReport:
    """
    Bilan de vérification des pièces d'un manifeste.

    Attributes:
        corrupted: Index primaires dont l'empreinte ne correspond pas
        missing: Index primaires introuvables dans le store
        recoverable: Index défaillants pour lesquels une réplique valide existe
    """
    corrupted: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)
    recoverable: List[int] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        """True si toutes les pièces primaires sont intactes."""
        return not self.corrupted and not self.missing

    @property
    def reconstructible(self) -> bool:
        """True si chaque pièce défaillante a une réplique valide."""
        failed = set(self.corrupted) | set(self.missing)
        return failed <= set(self.recoverable)
