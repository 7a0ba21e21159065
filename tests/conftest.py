import sys
from pathlib import Path


SRC_PATH = Path(__file__).resolve().parents[1] / "src"


def pytest_configure(config):
    """Make src/shellhook importable without an editable install."""
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))
