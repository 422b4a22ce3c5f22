"""Classify legacy submissions as synthetic or real, optionally deleting the synthetic ones."""
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from clinicalforge.db import Base, engine, session_scope
from clinicalforge.migrations import run_migrations
from clinicalforge.services.synthetic import backfill_flags, purge_synthetic


def clean(purge: bool = False) -> None:
    print("=" * 50)
    print("Synthetic submission cleanup")
    print("=" * 50)

    print("\n[1/2] Backfilling isSynthetic flags...")
    Base.metadata.create_all(bind=engine)
    run_migrations(engine)
    with session_scope() as db:
        synthetic, real = backfill_flags(db)
    print(f"  flagged synthetic: {synthetic}")
    print(f"  flagged real: {real}")

    print("\n[2/2] Purging synthetic submissions...")
    if purge:
        with session_scope() as db:
            deleted = purge_synthetic(db)
        print(f"  deleted: {deleted}")
    else:
        print("  skipped (pass --purge to delete)")

    print("\n" + "=" * 50)
    print("Done")
    print("=" * 50)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--purge", action="store_true", help="delete submissions flagged synthetic")
    clean(purge=parser.parse_args().purge)
