"""Exit codes shared by CLI commands."""

SYSTEM_EXIT_CODE = 1
VALIDATION_EXIT_CODE = 2
PROVIDER_EXIT_CODE = 3
NO_DATA_EXIT_CODE = 4
DATA_QUALITY_EXIT_CODE = 5

__all__ = [
    "DATA_QUALITY_EXIT_CODE",
    "NO_DATA_EXIT_CODE",
    "PROVIDER_EXIT_CODE",
    "SYSTEM_EXIT_CODE",
    "VALIDATION_EXIT_CODE",
]
