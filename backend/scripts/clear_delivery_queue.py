#!/usr/bin/env python3
"""Delete every delivery job and scheduler lease (profiles, notifications and templates are kept).
Run from backend: python scripts/clear_delivery_queue.py
"""
import sys
from pathlib import Path

# Ensure backend is on path when run as script
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.db.session import SessionLocal
from app.services.admin_service import clear_delivery_queue


def main():
    db = SessionLocal()
    try:
        deleted = clear_delivery_queue(db)
        print("Delivery queue cleared. Rows deleted:")
        for table, count in deleted.items():
            print(f"  {table}: {count}")
        print()
        print("Restart the backend server so the processor starts without stale in-memory state.")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
