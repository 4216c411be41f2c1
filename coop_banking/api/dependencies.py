"""
Shared API dependencies
"""

from typing import Optional

from ..system import BankingSystem


_banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    """Process-wide banking system, built from configuration on first use"""
    global _banking_system
    if _banking_system is None:
        _banking_system = BankingSystem.from_config()
    return _banking_system
