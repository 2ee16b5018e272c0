"""Pytest configuration to ensure tests use local source code."""

import sys
from pathlib import Path

# Put src/ first so the checkout is tested rather than an installed batchpurge
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))
