"""
Backup module for rotavault.

This module handles the core backup functionality including:
- Tier policies and the due/not-due decision
- Artifact naming and local storage
- Artifact production (external command)
- Tier orchestration
- Retention policy enforcement
"""

from .tiers import BackupUnit, TierPolicy, is_due
from .naming import Artifact
from .producer import CommandProducer, ProducerFailure, ProducerResult
from .storage import LocalArtifactStore, StorageError
from .retention import RetentionEnforcer
from .executor import BackupOrchestrator, MissingArtifact, TierExecutor, TierResult

__all__ = [
    'BackupUnit',
    'TierPolicy',
    'is_due',
    'Artifact',
    'CommandProducer',
    'ProducerFailure',
    'ProducerResult',
    'LocalArtifactStore',
    'StorageError',
    'RetentionEnforcer',
    'BackupOrchestrator',
    'MissingArtifact',
    'TierExecutor',
    'TierResult'
]
