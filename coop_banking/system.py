"""
Banking system composition root

Wires every engine component to one storage backend and one audit trail.
"""

from typing import Optional

from .config import CoopBankingConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .members import MemberRegistry
from .accounts import AccountLedger
from .loans import LoanManager
from .deposits import FixedDepositEngine
from .recurring import RecurringDepositEngine
from .shares import ShareRegistry
from .dividends import DividendEngine
from .logging_config import setup_logging, get_logger


class BankingSystem:
    """Cooperative banking engine with all components initialized"""

    def __init__(self, config: Optional[CoopBankingConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.logger = get_logger("coop_banking.system")

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.member_registry = MemberRegistry(self.storage, self.audit_trail)
        self.account_ledger = AccountLedger(self.storage, self.audit_trail, self.member_registry)
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail, self.member_registry,
            approval_required=self.config.loan_approval_required
        )
        self.fixed_deposits = FixedDepositEngine(
            self.storage, self.audit_trail, self.member_registry,
            default_penalty_rate=self.config.fd_default_penalty_rate,
            enforce_maturity_date=self.config.enforce_maturity_date
        )
        self.recurring_deposits = RecurringDepositEngine(
            self.storage, self.audit_trail, self.member_registry,
            missed_installment_penalty_rate=self.config.rd_missed_installment_penalty_rate,
            early_closure_penalty_rate=self.config.rd_early_closure_penalty_rate,
            enforce_maturity_date=self.config.enforce_maturity_date
        )
        self.share_registry = ShareRegistry(self.storage, self.audit_trail, self.member_registry)
        self.dividend_engine = DividendEngine(
            self.storage, self.audit_trail, self.member_registry, self.share_registry,
            bank_id=self.config.bank_id
        )

    @classmethod
    def from_config(cls, config: Optional[CoopBankingConfig] = None) -> 'BankingSystem':
        """Build a system and configure logging from settings"""
        config = config or get_config()
        setup_logging(config.log_level, log_format=config.log_format)
        return cls(config)

    def close(self) -> None:
        self.storage.close()
