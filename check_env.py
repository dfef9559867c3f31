#!/usr/bin/env python3
"""Report which batch engine integrations are configured (.env or environment)."""

import sys
from pathlib import Path

ENV_TEMPLATE = """# Supabase (required: orders, batches and notifications)
BATCH_SUPABASE_URL=https://your-project-id.supabase.co
BATCH_SUPABASE_KEY=your-service-role-key-here

# Mapbox geocoding (optional: ZIP centroids are used without it)
BATCH_MAPBOX_TOKEN=

# AI clustering gateway (optional: geographic clustering is used without it)
BATCH_AI_API_KEY=

# OSRM routing (optional: Haversine estimates are used when unreachable)
BATCH_OSRM_BASE_URL=https://router.project-osrm.org
"""


def _mask(value: str) -> str:
    return value[:12] + "..." if len(value) > 12 else value


def main() -> int:
    project_root = Path(__file__).parent
    env_file = project_root / ".env"
    if not env_file.exists():
        env_file.write_text(ENV_TEMPLATE, encoding="utf-8")
        print(f"Created template .env at {env_file}; fill in your credentials and re-run.")
        return 1

    sys.path.insert(0, str(project_root / "src"))
    from batch_engine.config import settings

    checks = [
        ("Supabase URL", settings.supabase_url, True),
        ("Supabase key", settings.supabase_key, True),
        ("Mapbox token", settings.mapbox_token, False),
        ("AI gateway key", settings.ai_api_key, False),
        ("OSRM base URL", settings.osrm_base_url, False),
    ]
    missing_required = False
    for label, value, required in checks:
        if value:
            print(f"✅ {label}: {_mask(value)}")
        elif required:
            missing_required = True
            print(f"❌ {label}: not set (BATCH_ prefix expected)")
        else:
            print(f"⚠️  {label}: not set, fallback will be used")
    return 1 if missing_required else 0


if __name__ == "__main__":
    sys.exit(main())
