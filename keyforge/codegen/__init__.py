"""
Code generator: layout validation and QMK source emission.
"""

from keyforge.codegen.generator import (
    FirmwareGenerator,
    GeneratedFiles,
    GenerationError,
    generate,
)
from keyforge.codegen.validator import (
    IssueCategory,
    ValidationIssue,
    ValidationReport,
    validate,
)

__all__ = [
    "FirmwareGenerator",
    "GeneratedFiles",
    "GenerationError",
    "generate",
    "IssueCategory",
    "ValidationIssue",
    "ValidationReport",
    "validate",
]
