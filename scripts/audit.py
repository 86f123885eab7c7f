"""Verify the mapping audit log from a source checkout: python scripts/audit.py [LOG_FILE]"""
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mapping_sync.audit import main

if __name__ == "__main__":
    main()
