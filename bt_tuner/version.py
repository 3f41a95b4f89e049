"""
Version information and interpreter compatibility checks.
"""
from __future__ import annotations

import sys
from typing import Tuple

__version__ = "0.4.0"

MIN_PYTHON: Tuple[int, int] = (3, 9)


def check_python_version() -> Tuple[bool, str]:
    """
    Check if Python version meets minimum requirements.
    
    Returns:
        (is_compatible, message)
    """
    current = (sys.version_info.major, sys.version_info.minor)
    if current < MIN_PYTHON:
        return False, (
            f"Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ required, "
            f"but running {current[0]}.{current[1]}"
        )
    return True, f"Python {current[0]}.{current[1]} OK"
