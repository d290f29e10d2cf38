"""
Backup module for BankVault.

This module handles the core backup functionality including:
- Database and auxiliary file capture
- Compression
- Execution orchestration and restore
- Retention policy enforcement
"""

from .executor import BackupExecutor
from .capture import SQLiteFileCapture, PostgresDumpCapture, AuxiliaryFileCapture, create_capture
from .compression import create_archive
from .retention import RetentionManager
from .service import BackupService, init_backup_service

__all__ = [
    'BackupExecutor',
    'SQLiteFileCapture',
    'PostgresDumpCapture',
    'AuxiliaryFileCapture',
    'create_capture',
    'create_archive',
    'RetentionManager',
    'BackupService',
    'init_backup_service'
]
