import sys
from pathlib import Path

# Make the repository root importable when tests run without an install
# (python tests/run_all_tests.py or a bare `pytest` from a checkout).
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))
