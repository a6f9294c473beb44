"""
Import gift mappings into the local gift catalog.

Input is a JSON object keyed by provider gift id, in the same shape as the
bot's historical GIFT_MAPPINGS table:

    {
      "d01a849b9ef17642d8f4": {"name": "Heart", "stars": 15},
      "d01a849bfc7f7938aa86": {"name": "Bear", "stars": 75, "displayName": "Teddy Bear"}
    }

Entries whose provider id already belongs to another gift name are reported
and skipped.
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path so we can import from repositories
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.gift import GiftDefinition
from domain.time import utc_now
from repositories.catalog_store import CatalogConflictError, GiftCatalogStore
from repositories.client import catalog_path_from_env, load_env_file


def import_mappings(store: GiftCatalogStore, mappings: dict) -> tuple[int, int]:
    """
    Upsert every mapping into the store.

    Returns:
        (imported, skipped)
    """
    imported = 0
    skipped = 0

    for provider_id, entry in mappings.items():
        try:
            definition = GiftDefinition(
                name=str(entry["name"]).strip(),
                star_cost=int(entry["stars"]),
                updated_at=utc_now(),
                provider_gift_id=str(provider_id),
                display_name=entry.get("displayName") or "",
            )
            store.upsert(definition)
            imported += 1
            print(f"  [OK] {definition.name} -> {provider_id} ({definition.star_cost} stars)")
        except (KeyError, ValueError, TypeError) as e:
            # CatalogConflictError is a ValueError
            skipped += 1
            label = "CONFLICT" if isinstance(e, CatalogConflictError) else "INVALID"
            print(f"  [{label}] {provider_id}: {e}")

    return imported, skipped


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Import gift mappings (provider id -> name, stars) into the gift catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/import_gift_mappings.py mappings.json
  python scripts/import_gift_mappings.py mappings.json --catalog data/gift-catalog.json
        """
    )
    parser.add_argument("mappings_file", type=Path, help="JSON file of mappings")
    parser.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="Catalog file (default: CATALOG_PATH or data/gift-catalog.json)"
    )
    args = parser.parse_args()

    try:
        with args.mappings_file.open("r", encoding="utf-8") as f:
            mappings = json.load(f)
    except (OSError, ValueError) as e:
        print(f"[ERROR] Could not read {args.mappings_file}: {e}")
        return 1

    if not isinstance(mappings, dict):
        print("[ERROR] Mappings file must contain a JSON object keyed by provider gift id")
        return 1

    load_env_file()
    catalog_path = args.catalog or catalog_path_from_env()
    store = GiftCatalogStore(catalog_path)
    store.initialize()

    print(f"Importing {len(mappings)} mappings into {catalog_path}")
    imported, skipped = import_mappings(store, mappings)
    print(f"\nImported: {imported}, skipped: {skipped}")
    return 0 if skipped == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
