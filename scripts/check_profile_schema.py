#!/usr/bin/env python3
"""Report which optional profile columns are deployed.

Probes each optional column of the profiles table and prints the value to
put in PROFILE_DISABLED_COLUMNS for this database.
"""

import sys
from pathlib import Path

# Add parent directory to path to import from src
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.schema import OPTIONAL_COLUMNS, SCHEMA_VERSION, ProfileSchema
from src.core.supabase import get_supabase_client


def main() -> None:
    """Main execution function."""
    print(f"🔍 Probing profiles table against schema v{SCHEMA_VERSION}...\n")

    try:
        client = get_supabase_client()
    except Exception as e:
        print(f"❌ Error: Failed to initialize Supabase client: {e}")
        sys.exit(1)

    schema = ProfileSchema()
    missing = schema.probe(client)

    print("=" * 50)
    print(f"{'Column':<30} {'Status'}")
    print("=" * 50)
    for column in OPTIONAL_COLUMNS:
        print(f"{column:<30} {'missing' if column in missing else 'ok'}")
    print("=" * 50)

    if not missing:
        print("\n✅ All optional columns are deployed")
        return

    print(f"\n⚠️  {len(missing)} optional column(s) missing. Suggested setting:")
    print(f"PROFILE_DISABLED_COLUMNS={','.join(sorted(missing))}")


if __name__ == "__main__":
    main()
