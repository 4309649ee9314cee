# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Root conftest.py so the gateway packages import without an install."""

import sys
from pathlib import Path

# Add repo root to sys.path so gateway_secrets, gateway_credentials and gateway_logging resolve
_repo_root = Path(__file__).parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))
