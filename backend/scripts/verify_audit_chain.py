"""
Verify the audit ledger hash chain.
Run against the configured database: python scripts/verify_audit_chain.py

Exits with status 1 when any entry's hash or chain link does not match.
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from authcore.core.database import database
from authcore.services.audit_ledger import audit_ledger


def main():
    database.init()
    try:
        with database.session() as db:
            result = audit_ledger.verify_chain(db)
    finally:
        database.dispose()

    if result.ok:
        print(f"Audit chain OK ({result.checked} entries verified).")
        return
    print(f"Audit chain BROKEN at entry id={result.broken_at} after {result.checked} valid entries.")
    print(f"Reason: {result.reason}")
    sys.exit(1)


if __name__ == "__main__":
    main()
