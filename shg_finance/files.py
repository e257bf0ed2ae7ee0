"""
Proof File Storage Module

Payment and savings proofs are handed to a file store which returns a path
reference; the engine persists only that reference.
"""

from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple, Union

from .config import get_config
from .errors import ValidationError
from .logging_config import get_logger

logger = get_logger("files")

# (filename, content)
ProofUpload = Tuple[str, bytes]


class ProofStorage(ABC):
    """Accepts (path, binary) and returns the stored path reference"""

    @abstractmethod
    def put(self, path: str, content: bytes) -> str:
        pass


class LocalProofStorage(ProofStorage):
    """Writes proofs below a root directory on the local filesystem"""

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root if root is not None else get_config().proof_storage_root)

    def put(self, path: str, content: bytes) -> str:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.info(f"Stored proof file {path} ({len(content)} bytes)")
        return path


def proof_path(category: str, filename: str, app_env: Optional[str] = None) -> str:
    """``{app_env}/{category}/proof/{filename}``"""
    name = PurePosixPath(filename.replace("\\", "/")).name
    if not name or name in (".", ".."):
        raise ValidationError("Proof file name is invalid")
    return f"{app_env or get_config().app_env}/{category}/proof/{name}"


def store_proof(store: Optional[ProofStorage], category: str,
                upload: Optional[ProofUpload]) -> Optional[str]:
    """Store an optional upload, returning its path reference"""
    if upload is None:
        return None
    if store is None:
        raise ValidationError("No proof storage configured")
    filename, content = upload
    return store.put(proof_path(category, filename), content)
