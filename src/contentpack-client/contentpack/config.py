"""
Configuration du pipeline de packaging de contenu.

Ce module contient les paramètres du découpage, de la réplication,
du chiffrement et des archives. Chaque composant reçoit un objet de
configuration fermé (dataclass figée), typé et validé une seule fois
à la construction.

Les valeurs par défaut peuvent être surchargées par des variables
d'environnement:
    - CONTENTPACK_SHARDING: Active le découpage (défaut: true)
    - CONTENTPACK_PIECE_SIZE: Taille d'une pièce en bytes (défaut: 1 MiB)
    - CONTENTPACK_MAX_PIECES: Nombre maximum de pièces (défaut: 100)
    - CONTENTPACK_REPLICATION: Facteur de réplication (défaut: 1)
    - CONTENTPACK_ENCRYPTION: Active le chiffrement (défaut: false)
    - CONTENTPACK_CIPHER: Algorithme (défaut: AES-GCM)
    - CONTENTPACK_KEY_SIZE: Taille de clé en bits (défaut: 256)
    - CONTENTPACK_ARCHIVE_COMPRESSION: Compression gzip des archives (défaut: false)
    - CONTENTPACK_ARCHIVE_UNVERIFIED: Exporter les entrées non vérifiées (défaut: false)
    - CONTENTPACK_ARCHIVE_MAX_SIZE: Taille maximale d'une archive (défaut: 100 MiB)
    - CONTENTPACK_STORE_DIR: Répertoire du store fichier (défaut: ~/.contentpack/store)

Example:
    >>> from contentpack.config import ShardingConfig
    >>> ShardingConfig().piece_size
    1048576
    >>> ShardingConfig(piece_size=0)  # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ConfigurationError: ...
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum

from .exceptions import ConfigurationError

# Logger pour ce module
logger = logging.getLogger(__name__)

MIB = 1024 * 1024

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


class CipherAlgorithm(str, Enum):
    """Algorithmes de chiffrement symétrique supportés."""
    AES_GCM = "AES-GCM"
    AES_CTR = "AES-CTR"
    CHACHA20_POLY1305 = "ChaCha20-Poly1305"

    @classmethod
    def parse(cls, value: str) -> 'CipherAlgorithm':
        """
        Convertit une chaîne en algorithme.

        Raises:
            ValueError: Si l'algorithme est inconnu
        """
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        raise ValueError(f"Unsupported cipher algorithm: {value}")


class ChunkingAlgorithm(str, Enum):
    """Stratégies de découpage. Seul le découpage à taille fixe existe."""
    FIXED_SIZE = "fixed-size"


def _get_env_int(key: str, default: int) -> int:
    """
    Récupère une variable d'environnement comme entier.

    Args:
        key: Nom de la variable d'environnement
        default: Valeur par défaut si non définie

    Returns:
        Valeur entière de la variable ou default

    Example:
        >>> import os
        >>> os.environ['TEST_VAR'] = '42'
        >>> _get_env_int('TEST_VAR', 10)
        42
        >>> _get_env_int('NONEXISTENT', 10)
        10
    """
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Variable d'environnement {key}={value} n'est pas un entier, "
                       f"utilisation de la valeur par défaut {default}")
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """
    Récupère une variable d'environnement comme booléen.

    Accepte 1/true/yes/on et 0/false/no/off (insensible à la casse).
    """
    value = os.environ.get(key)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning(f"Variable d'environnement {key}={value} n'est pas un booléen, "
                   f"utilisation de la valeur par défaut {default}")
    return default


def _get_env_str(key: str, default: str) -> str:
    """Récupère une variable d'environnement comme string."""
    return os.environ.get(key, default)


def _expand_path(path: str) -> str:
    """
    Étend un chemin avec ~ et variables d'environnement.

    Args:
        path: Chemin à étendre

    Returns:
        Chemin absolu étendu
    """
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path)))


# ============================================================================
# OBJETS DE CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class ShardingConfig:
    """
    Paramètres du découpage et de la réplication.

    Attributes:
        enabled: Si False, les objets sont toujours stockés d'un bloc
        piece_size: Taille d'une pièce en bytes (la dernière peut être plus courte)
        max_pieces: Nombre maximum de pièces primaires par objet
        replication_factor: Nombre de copies complètes du jeu de pièces (1 = aucune réplique)
        algorithm: Stratégie de découpage
    """
    enabled: bool = True
    piece_size: int = MIB
    max_pieces: int = 100
    replication_factor: int = 1
    algorithm: ChunkingAlgorithm = ChunkingAlgorithm.FIXED_SIZE

    def __post_init__(self):
        if self.piece_size < 1:
            raise ConfigurationError(
                "Piece size must be at least 1 byte",
                {"piece_size": self.piece_size}
            )
        if self.max_pieces < 1:
            raise ConfigurationError(
                "Max pieces must be at least 1",
                {"max_pieces": self.max_pieces}
            )
        if self.replication_factor < 1:
            raise ConfigurationError(
                "Replication factor must be at least 1",
                {"replication_factor": self.replication_factor}
            )

    @classmethod
    def from_env(cls) -> 'ShardingConfig':
        """Construit la configuration depuis les variables d'environnement."""
        return cls(
            enabled=_get_env_bool('CONTENTPACK_SHARDING', True),
            piece_size=_get_env_int('CONTENTPACK_PIECE_SIZE', MIB),
            max_pieces=_get_env_int('CONTENTPACK_MAX_PIECES', 100),
            replication_factor=_get_env_int('CONTENTPACK_REPLICATION', 1),
        )


@dataclass(frozen=True)
class EncryptionConfig:
    """
    Paramètres du chiffrement appliqué à l'objet entier avant découpage.

    Attributes:
        enabled: Chiffrer les objets à l'upload
        algorithm: Algorithme symétrique
        key_size: Taille de clé en bits (128 ou 256; 256 obligatoire pour ChaCha20)
    """
    enabled: bool = False
    algorithm: CipherAlgorithm = CipherAlgorithm.AES_GCM
    key_size: int = 256

    def __post_init__(self):
        try:
            algorithm = CipherAlgorithm.parse(self.algorithm)
        except ValueError as e:
            raise ConfigurationError(str(e), {"algorithm": self.algorithm}) from e
        # Dataclass figée: normalisation via object.__setattr__
        object.__setattr__(self, 'algorithm', algorithm)
        if self.key_size not in (128, 256):
            raise ConfigurationError(
                "Key size must be 128 or 256 bits",
                {"key_size": self.key_size}
            )
        if algorithm is CipherAlgorithm.CHACHA20_POLY1305 and self.key_size != 256:
            raise ConfigurationError(
                "ChaCha20-Poly1305 requires a 256-bit key",
                {"key_size": self.key_size}
            )

    @property
    def key_bytes(self) -> int:
        """Taille de clé en bytes."""
        return self.key_size // 8

    @classmethod
    def from_env(cls) -> 'EncryptionConfig':
        """Construit la configuration depuis les variables d'environnement."""
        return cls(
            enabled=_get_env_bool('CONTENTPACK_ENCRYPTION', False),
            algorithm=_get_env_str('CONTENTPACK_CIPHER', CipherAlgorithm.AES_GCM.value),
            key_size=_get_env_int('CONTENTPACK_KEY_SIZE', 256),
        )


@dataclass(frozen=True)
class ArchiveConfig:
    """
    Paramètres d'export d'archives.

    Attributes:
        compression: Compresser l'archive complète avec gzip
        include_unverified: Inclure les entrées non vérifiées
        max_size: Taille totale maximale des objets exportés, en bytes
    """
    compression: bool = False
    include_unverified: bool = False
    max_size: int = 100 * MIB

    def __post_init__(self):
        if self.max_size < 1:
            raise ConfigurationError(
                "Archive max size must be positive",
                {"max_size": self.max_size}
            )

    @classmethod
    def from_env(cls) -> 'ArchiveConfig':
        """Construit la configuration depuis les variables d'environnement."""
        return cls(
            compression=_get_env_bool('CONTENTPACK_ARCHIVE_COMPRESSION', False),
            include_unverified=_get_env_bool('CONTENTPACK_ARCHIVE_UNVERIFIED', False),
            max_size=_get_env_int('CONTENTPACK_ARCHIVE_MAX_SIZE', 100 * MIB),
        )


@dataclass(frozen=True)
class PackagingConfig:
    """Configuration complète du pipeline."""
    sharding: ShardingConfig = field(default_factory=ShardingConfig)
    encryption: EncryptionConfig = field(default_factory=EncryptionConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    store_dir: str = _expand_path('~/.contentpack/store')

    @classmethod
    def from_env(cls) -> 'PackagingConfig':
        """
        Construit la configuration complète depuis l'environnement.

        Raises:
            ConfigurationError: Si une valeur est invalide
        """
        return cls(
            sharding=ShardingConfig.from_env(),
            encryption=EncryptionConfig.from_env(),
            archive=ArchiveConfig.from_env(),
            store_dir=_expand_path(_get_env_str('CONTENTPACK_STORE_DIR', '~/.contentpack/store')),
        )


def get_config() -> PackagingConfig:
    """
    Retourne la configuration issue de l'environnement.

    Returns:
        Instance de PackagingConfig

    Example:
        >>> config = get_config()
        >>> config.sharding.replication_factor >= 1
        True
    """
    return PackagingConfig.from_env()


def log_config(config: PackagingConfig) -> None:
    """
    Log la configuration active pour le debug.

    Args:
        config: Configuration à tracer
    """
    logger.info("=== Configuration Packaging ===")
    logger.info(f"Store: {config.store_dir}")
    logger.info(f"Découpage: enabled={config.sharding.enabled}, "
                f"piece_size={config.sharding.piece_size}, "
                f"max_pieces={config.sharding.max_pieces}")
    logger.info(f"Réplication: facteur={config.sharding.replication_factor}")
    logger.info(f"Chiffrement: enabled={config.encryption.enabled}, "
                f"algorithm={config.encryption.algorithm.value}, "
                f"key_size={config.encryption.key_size}")
    logger.info(f"Archives: compression={config.archive.compression}, "
                f"max_size={config.archive.max_size}")
    logger.info("===============================")
