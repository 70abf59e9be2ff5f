"""
Exceptions personnalisées pour le pipeline de packaging de contenu.

Ce module définit une hiérarchie d'exceptions spécifiques au découpage,
à la vérification d'intégrité, au chiffrement et aux archives, pour une
gestion d'erreurs précise et inspectable.

Aucune exception ne transporte de matériel de clé ni de données chiffrées:
seuls des index, des identifiants de contenu et des empreintes figurent
dans les détails.

Example:
    >>> from contentpack.exceptions import ShardRecoveryError
    >>> raise ShardRecoveryError("Piece 3 could not be recovered", index=3)
    Traceback (most recent call last):
    ...
    contentpack.exceptions.ShardRecoveryError: Piece 3 could not be recovered [index=3]
"""

from typing import Optional, Dict, Any


class PackagingException(Exception):
    """
    Exception de base pour toutes les erreurs du pipeline.

    Toutes les exceptions du paquet héritent de cette classe, ce qui
    permet de capturer toutes les erreurs de packaging avec un seul except.

    Attributes:
        message: Message d'erreur descriptif
        details: Dictionnaire avec des informations supplémentaires

    Example:
        >>> try:
        ...     raise PackagingException("Something went wrong", {"content_id": "abc"})
        ... except PackagingException as e:
        ...     print(e.message)
        Something went wrong
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialise l'exception.

        Args:
            message: Message d'erreur
            details: Informations supplémentaires optionnelles
        """
        self.message = message
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Formate le message avec les détails."""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{details_str}]"
        return self.message


class ConfigurationError(PackagingException):
    """
    Erreur de configuration.

    Levée quand un objet de configuration est invalide (taille de pièce
    nulle, facteur de réplication < 1, algorithme inconnu...).

    Example:
        >>> raise ConfigurationError(
        ...     "Invalid piece size",
        ...     {"piece_size": 0}
        ... )  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ...
        ConfigurationError: Invalid piece size [piece_size=0]
    """
    pass


class TooManyPiecesError(PackagingException):
    """
    Le découpage produirait plus de pièces que la limite autorisée.

    Levée par le chunker avant toute production de pièces, donc avant
    toute écriture dans le store.

    Attributes:
        piece_count: Nombre de pièces que le découpage aurait produites
        max_pieces: Limite configurée
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 piece_count: int = 0, max_pieces: int = 0):
        self.piece_count = piece_count
        self.max_pieces = max_pieces
        details = details or {}
        details.setdefault('piece_count', piece_count)
        details.setdefault('max_pieces', max_pieces)
        super().__init__(message, details)


class DecryptionError(PackagingException):
    """
    Erreur de déchiffrement.

    Levée quand la clé a une longueur incorrecte, que l'algorithme n'est
    pas reconnu, ou que l'authentification échoue (données altérées ou
    mauvaise clé).

    Attributes:
        algorithm: Algorithme demandé
        reason: Catégorie de l'échec ('key_length', 'algorithm', 'authentication', ...)

    Example:
        >>> raise DecryptionError(
        ...     "Authentication failed",
        ...     algorithm="AES-GCM",
        ...     reason="authentication"
        ... )  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ...
        DecryptionError: Authentication failed [algorithm=AES-GCM, reason=authentication]
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 algorithm: Optional[str] = None, reason: Optional[str] = None):
        self.algorithm = algorithm
        self.reason = reason
        details = details or {}
        if algorithm and 'algorithm' not in details:
            details['algorithm'] = algorithm
        if reason and 'reason' not in details:
            details['reason'] = reason
        super().__init__(message, details)


class ShardRecoveryError(PackagingException):
    """
    Une pièce (et toutes ses répliques) n'a pas pu être vérifiée.

    Levée par le reconstructeur quand ni la pièce primaire ni aucune de
    ses répliques ne correspond à l'empreinte attendue.

    Attributes:
        index: Index de la pièce primaire concernée
        expected_checksum: Empreinte attendue (depuis le manifeste)
        attempts: Nombre de copies essayées (primaire + répliques)

    Example:
        >>> raise ShardRecoveryError(
        ...     "Piece could not be recovered",
        ...     index=2,
        ...     attempts=3
        ... )  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ...
        ShardRecoveryError: Piece could not be recovered [index=2, attempts=3]
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 index: int = 0, expected_checksum: Optional[str] = None,
                 attempts: int = 0):
        self.index = index
        self.expected_checksum = expected_checksum
        self.attempts = attempts
        details = details or {}
        details.setdefault('index', index)
        if attempts:
            details.setdefault('attempts', attempts)
        if expected_checksum:
            details.setdefault('expected', expected_checksum[:16])
        super().__init__(message, details)


class ManifestIntegrityError(PackagingException):
    """
    L'empreinte de l'objet reconstruit ne correspond pas au manifeste.

    Toutes les pièces ont été vérifiées individuellement, mais leur
    concaténation ne correspond pas à ``originalChecksum``. Signale un
    manifeste corrompu, distinct d'une corruption de pièce.

    Attributes:
        expected_checksum: Empreinte annoncée par le manifeste
        actual_checksum: Empreinte calculée sur la reconstruction
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 expected_checksum: Optional[str] = None,
                 actual_checksum: Optional[str] = None):
        self.expected_checksum = expected_checksum
        self.actual_checksum = actual_checksum
        details = details or {}
        if expected_checksum and 'expected' not in details:
            details['expected'] = expected_checksum[:16]
        if actual_checksum and 'actual' not in details:
            details['actual'] = actual_checksum[:16]
        super().__init__(message, details)


class MalformedManifestError(PackagingException):
    """
    Violation d'un invariant structurel du manifeste.

    Levée avant toute lecture dans le store: JSON invalide, champ manquant,
    ``formatVersion`` inconnue, nombre de pièces incohérent, index primaire
    mal placé...

    Example:
        >>> raise MalformedManifestError(
        ...     "Piece list length mismatch",
        ...     {"pieces": 5, "expected": 6}
        ... )  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ...
        MalformedManifestError: Piece list length mismatch [pieces=5, expected=6]
    """
    pass


class ArchiveParseError(PackagingException):
    """
    Erreur de lecture d'une archive.

    Levée sur un enregistrement tronqué (longueur déclarée supérieure aux
    octets restants), une décompression impossible, ou un premier
    enregistrement qui n'est pas un bloc de métadonnées JSON valide.

    Attributes:
        offset: Position (en octets) où la lecture a échoué
        record: Index de l'enregistrement concerné
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 offset: Optional[int] = None, record: Optional[int] = None):
        self.offset = offset
        self.record = record
        details = details or {}
        if offset is not None and 'offset' not in details:
            details['offset'] = offset
        if record is not None and 'record' not in details:
            details['record'] = record
        super().__init__(message, details)


class ArchiveSizeError(PackagingException):
    """
    Export refusé: aucune entrée sélectionnée ou taille totale au-delà
    de la limite configurée.
    """
    pass


class ContentStoreError(PackagingException):
    """
    Erreur d'entrée/sortie d'un backend de store.

    Attributes:
        content_id: Identifiant de contenu concerné
        operation: Opération tentée ('put', 'get', 'init')
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 content_id: Optional[str] = None, operation: Optional[str] = None):
        self.content_id = content_id
        self.operation = operation
        details = details or {}
        if content_id and 'content_id' not in details:
            details['content_id'] = content_id
        if operation and 'operation' not in details:
            details['operation'] = operation
        super().__init__(message, details)


class NotFoundError(ContentStoreError):
    """
    Contenu absent du store.

    Propagée telle quelle par le store; le reconstructeur la convertit
    en ``ShardRecoveryError`` pour les pièces.

    Example:
        >>> raise NotFoundError(
        ...     "Content not found",
        ...     content_id="9f86d081884c7d65"
        ... )  # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ...
        NotFoundError: Content not found [content_id=9f86d081884c7d65, operation=get]
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 content_id: Optional[str] = None):
        super().__init__(message, details, content_id=content_id, operation='get')
