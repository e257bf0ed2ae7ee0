"""
System Wiring Module

Builds every engine component over one storage backend.
"""

from typing import Optional

from .applications import LoanApplicationManager
from .config import ShgConfig, get_config
from .files import LocalProofStorage, ProofStorage
from .groups import GroupDirectory
from .installments import InstallmentManager
from .ledger import GroupLedger
from .loans import LoanManager
from .notifications import NotesRenderer
from .preclosure import PreclosureManager
from .savings import SavingsManager
from .settings import SettingsRepository
from .storage import StorageInterface, create_storage


class ShgSystem:
    """SHG finance engine with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[ShgConfig] = None,
                 proof_storage: Optional[ProofStorage] = None,
                 renderer: Optional[NotesRenderer] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.proof_storage = proof_storage or LocalProofStorage(self.config.proof_storage_root)

        self.directory = GroupDirectory(self.storage)
        self.settings = SettingsRepository(self.storage)
        self.ledger = GroupLedger(self.storage, self.directory, renderer)
        self.applications = LoanApplicationManager(self.storage, self.directory, self.settings)
        self.loans = LoanManager(
            self.storage, self.applications, self.settings, self.ledger, self.directory
        )
        self.installments = InstallmentManager(
            self.storage, self.loans, self.settings, self.ledger, self.proof_storage
        )
        self.preclosure = PreclosureManager(self.storage, self.loans, self.settings, self.ledger)
        self.savings = SavingsManager(
            self.storage, self.directory, self.settings, self.ledger, self.proof_storage
        )

    def close(self) -> None:
        self.storage.close()
