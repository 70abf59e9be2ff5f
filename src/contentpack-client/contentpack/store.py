"""
Interface du store adressé par contenu et ses implémentations locales.

Le pipeline ne dépend que de deux opérations: ``put(bytes) -> id`` et
``get(id) -> bytes``. L'identifiant est une fonction déterministe du
contenu: écrire deux fois les mêmes octets donne le même identifiant.

Structure du répertoire de ``FileContentStore``:
    ~/.contentpack/store/
    ├── 3f/
    │   ├── 3fa2...e1
    │   └── 3f07...9c
    └── a8/
        └── a811...04

Example:
    >>> import asyncio
    >>> from contentpack.store import MemoryContentStore
    >>> store = MemoryContentStore()
    >>> cid = asyncio.run(store.put(b"hello"))
    >>> asyncio.run(store.get(cid))
    b'hello'
"""

import asyncio
import hashlib
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .exceptions import ContentStoreError, NotFoundError

_CONTENT_ID_RE = re.compile(r'^[0-9a-f]{64}$')


def compute_content_id(data: bytes) -> str:
    """
    Calcule l'identifiant de contenu (BLAKE2b-256 hexadécimal).

    Ce hachage d'adressage est distinct de l'empreinte d'intégrité
    SHA-256 utilisée dans les manifestes.
    """
    return hashlib.blake2b(data, digest_size=32).hexdigest()


class ContentStore(ABC):
    """Store clé/valeur adressé par contenu."""

    @abstractmethod
    async def put(self, data: bytes) -> str:
        """
        Écrit des octets et retourne leur identifiant de contenu.

        Raises:
            ContentStoreError: Si l'écriture échoue
        """

    @abstractmethod
    async def get(self, content_id: str) -> bytes:
        """
        Lit les octets d'un identifiant.

        Raises:
            NotFoundError: Si le contenu est absent
        """

    @abstractmethod
    async def has(self, content_id: str) -> bool:
        """Vérifie la présence d'un identifiant."""


class MemoryContentStore(ContentStore):
    """
    Store en mémoire.

    ``objects`` est exposé pour l'inspection; y remplacer des octets
    simule une corruption côté store.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.objects: Dict[str, bytes] = {}
        self.logger = logger or logging.getLogger(__name__)

    async def put(self, data: bytes) -> str:
        content_id = compute_content_id(data)
        self.objects[content_id] = bytes(data)
        self.logger.debug(f"Objet écrit en mémoire: {content_id[:16]}... ({len(data)} bytes)")
        return content_id

    async def get(self, content_id: str) -> bytes:
        try:
            return self.objects[content_id]
        except KeyError:
            raise NotFoundError("Content not found", content_id=content_id) from None

    async def has(self, content_id: str) -> bool:
        return content_id in self.objects

    def __len__(self) -> int:
        return len(self.objects)


class FileContentStore(ContentStore):
    """
    Store sur disque, un fichier par objet.

    Les écritures passent par un fichier temporaire puis ``os.replace``:
    un objet est présent en entier ou absent.

    Attributes:
        storage_dir: Répertoire racine de stockage
        logger: Logger pour le debug

    Example:
        >>> store = FileContentStore("/tmp/contentpack-store")
        >>> store.storage_dir  # doctest: +ELLIPSIS
        '...'
    """

    def __init__(self, storage_dir: str, logger: Optional[logging.Logger] = None):
        """
        Initialise le store.

        Args:
            storage_dir: Répertoire de stockage (étendu avec ~ et créé si nécessaire)
            logger: Logger optionnel

        Raises:
            ContentStoreError: Si le répertoire ne peut pas être créé
        """
        self.storage_dir = os.path.abspath(os.path.expanduser(storage_dir))
        self.logger = logger or logging.getLogger(__name__)

        try:
            Path(self.storage_dir).mkdir(parents=True, exist_ok=True)
            self.logger.info(f"FileContentStore initialisé: {self.storage_dir}")
        except OSError as e:
            raise ContentStoreError(
                f"Failed to create storage directory: {e}",
                {"path": self.storage_dir},
                operation="init"
            ) from e

    def get_object_path(self, content_id: str) -> str:
        """
        Retourne le chemin du fichier d'un objet.

        Raises:
            NotFoundError: Si l'identifiant n'a pas le format attendu
        """
        if not _CONTENT_ID_RE.match(content_id or ''):
            raise NotFoundError("Invalid content id", content_id=content_id)
        return os.path.join(self.storage_dir, content_id[:2], content_id)

    def _write(self, content_id: str, data: bytes) -> str:
        path = self.get_object_path(content_id)
        if os.path.exists(path):
            return path
        parent = os.path.dirname(path)
        try:
            Path(parent).mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=parent, suffix='.tmp')
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise ContentStoreError(
                f"Failed to write object: {e}",
                content_id=content_id,
                operation="put"
            ) from e
        return path

    def _read(self, content_id: str) -> bytes:
        path = self.get_object_path(content_id)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            raise NotFoundError("Content not found", content_id=content_id) from None
        except OSError as e:
            raise ContentStoreError(
                f"Failed to read object: {e}",
                content_id=content_id,
                operation="get"
            ) from e

    async def put(self, data: bytes) -> str:
        content_id = compute_content_id(data)
        await asyncio.to_thread(self._write, content_id, bytes(data))
        self.logger.debug(f"Objet stocké: {content_id[:16]}... ({len(data)} bytes)")
        return content_id

    async def get(self, content_id: str) -> bytes:
        data = await asyncio.to_thread(self._read, content_id)
        self.logger.debug(f"Objet lu: {content_id[:16]}... ({len(data)} bytes)")
        return data

    async def has(self, content_id: str) -> bool:
        try:
            return os.path.exists(self.get_object_path(content_id))
        except NotFoundError:
            return False

    def list_ids(self) -> List[str]:
        """Liste les identifiants présents sur le disque."""
        ids = []
        root = Path(self.storage_dir)
        for prefix_dir in sorted(root.iterdir()):
            if not prefix_dir.is_dir():
                continue
            for entry in sorted(prefix_dir.iterdir()):
                if _CONTENT_ID_RE.match(entry.name):
                    ids.append(entry.name)
        return ids

    def delete(self, content_id: str) -> bool:
        """
        Supprime un objet.

        Returns:
            True si l'objet existait
        """
        path = self.get_object_path(content_id)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        self.logger.debug(f"Objet supprimé: {content_id[:16]}...")
        return True
