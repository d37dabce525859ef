"""
Domain models for the convergence engine.

All models are re-exported here for convenient access:

    from converge.core.models import DependencyDefinition, Requirement, RunResult
"""

from converge.core.models.dependency import (
    MISSING,
    Check,
    DependencyDefinition,
    DependencyKind,
    Requirement,
    VarDeclaration,
    Variant,
    met,
    unmet,
)
from converge.core.models.platform import Platform
from converge.core.models.result import Outcome, RunResult

__all__ = [
    # dependency.py
    "MISSING",
    "Check",
    "DependencyDefinition",
    "DependencyKind",
    "Requirement",
    "VarDeclaration",
    "Variant",
    "met",
    "unmet",
    # platform.py
    "Platform",
    # result.py
    "Outcome",
    "RunResult",
]
