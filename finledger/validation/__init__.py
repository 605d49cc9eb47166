"""Validation package: draft normalization and candidate reconciliation."""

from finledger.validation.errors import ValidationError
from finledger.validation.normalizer import (
    IMPORT_DEFAULTS,
    NormalizedTransaction,
    NormalizerDefaults,
    TransactionNormalizer,
)
from finledger.validation.reconciler import TransactionReconciler

__all__ = [
    "IMPORT_DEFAULTS",
    "NormalizedTransaction",
    "NormalizerDefaults",
    "TransactionNormalizer",
    "TransactionReconciler",
    "ValidationError",
]
