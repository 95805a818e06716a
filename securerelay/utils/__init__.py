"""
Utils module - Utility functions and helpers.
"""

from securerelay.utils.validators import (
    validate_passcode,
    validate_path_safe,
    validate_string_safe,
    validate_upload,
)

__all__ = [
    "validate_passcode",
    "validate_path_safe",
    "validate_string_safe",
    "validate_upload",
]
