"""
Pipeline de packaging et d'intégrité de contenu.

Ce module découpe des objets binaires en pièces de taille fixe, les
chiffre éventuellement au préalable, les réplique et les stocke dans un
store adressé par contenu; il les réassemble ensuite avec vérification
de bout en bout. Il sait aussi regrouper plusieurs objets dans une
archive binaire portable pour l'export et l'import en masse.

Composants principaux:
    - PackagingPipeline: Orchestrateur upload/download/export/import
    - Reconstructor: Récupération vérifiée avec repli sur les répliques
    - ArchiveCodec: Archives multi-objets (gzip optionnel)
    - SymmetricCipher: AES-GCM, AES-CTR, ChaCha20-Poly1305
    - MemoryContentStore / FileContentStore: Stores adressés par contenu

Configuration:
    Le module utilise des variables d'environnement pour la configuration:
    - CONTENTPACK_PIECE_SIZE: Taille des pièces (défaut: 1 MiB)
    - CONTENTPACK_MAX_PIECES: Pièces maximum par objet (défaut: 100)
    - CONTENTPACK_REPLICATION: Facteur de réplication (défaut: 1)
    - CONTENTPACK_ENCRYPTION: Chiffrement à l'upload (défaut: false)
    - CONTENTPACK_CIPHER: Algorithme (défaut: AES-GCM)

Example:
    >>> import asyncio
    >>> from contentpack import PackagingPipeline, MemoryContentStore
    >>>
    >>> async def main():
    ...     pipeline = PackagingPipeline(MemoryContentStore())
    ...     result = await pipeline.upload(b"data", name="a.bin", encrypt=True)
    ...     return await pipeline.download(result.item, key=result.encryption_key)
    >>> asyncio.run(main())
    b'data'

Architecture:
    1. Couche Orchestration (pipeline.py)
    2. Couche Intégrité (checksum.py, manifest.py, reconstructor.py)
    3. Couche Transformation (cipher.py, chunker.py, replicator.py, archive.py)
    4. Couche Stockage (store.py)
"""

# Configuration
from .config import (
    ArchiveConfig,
    ChunkingAlgorithm,
    CipherAlgorithm,
    EncryptionConfig,
    PackagingConfig,
    ShardingConfig,
    get_config,
    log_config,
)

# Modèles de données
from .models import (
    ArchiveMetadata,
    DatastoreItem,
    ImportResult,
    Manifest,
    Piece,
    PieceInfo,
    UploadResult,
    VerificationReport,
)

# Exceptions
from .exceptions import (
    PackagingException,
    ConfigurationError,
    TooManyPiecesError,
    DecryptionError,
    ShardRecoveryError,
    ManifestIntegrityError,
    MalformedManifestError,
    ArchiveParseError,
    ArchiveSizeError,
    ContentStoreError,
    NotFoundError,
)

# Composants
from .checksum import compute_checksum, verify_checksum
from .cipher import EncryptionEnvelope, SymmetricCipher, decrypt, encrypt
from .chunker import calculate_optimal_piece_size, split
from .replicator import replicate
from .manifest import build_manifest
from .reconstructor import Reconstructor, reconstruct
from .archive import ArchiveCodec, ParsedArchive
from .store import ContentStore, FileContentStore, MemoryContentStore
from .pipeline import DownloadStage, PackagingPipeline, UploadStage


__version__ = "1.0.0"

__all__ = [
    # Configuration
    "ArchiveConfig",
    "ChunkingAlgorithm",
    "CipherAlgorithm",
    "EncryptionConfig",
    "PackagingConfig",
    "ShardingConfig",
    "get_config",
    "log_config",

    # Modèles
    "ArchiveMetadata",
    "DatastoreItem",
    "ImportResult",
    "Manifest",
    "Piece",
    "PieceInfo",
    "UploadResult",
    "VerificationReport",

    # Exceptions
    "PackagingException",
    "ConfigurationError",
    "TooManyPiecesError",
    "DecryptionError",
    "ShardRecoveryError",
    "ManifestIntegrityError",
    "MalformedManifestError",
    "ArchiveParseError",
    "ArchiveSizeError",
    "ContentStoreError",
    "NotFoundError",

    # Composants
    "compute_checksum",
    "verify_checksum",
    "EncryptionEnvelope",
    "SymmetricCipher",
    "encrypt",
    "decrypt",
    "calculate_optimal_piece_size",
    "split",
    "replicate",
    "build_manifest",
    "Reconstructor",
    "reconstruct",
    "ArchiveCodec",
    "ParsedArchive",
    "ContentStore",
    "FileContentStore",
    "MemoryContentStore",
    "DownloadStage",
    "PackagingPipeline",
    "UploadStage",
]
