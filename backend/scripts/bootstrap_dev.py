"""
Dev bootstrap script: create the schema, a demo project and an admin key.

Usage:
    python -m scripts.bootstrap_dev [project_id]

This will:
  1. Create all tables (local dev only; production uses alembic)
  2. Create a project with the default quota and a 1-month subscription
  3. Generate an admin key and print it ONCE with its hash

Put the printed hash in .env as ADMIN_API_KEY_HASH. The raw key is
shown exactly once, so copy it immediately.
"""

import asyncio
import sys

# Ensure the project root is on the path
sys.path.insert(0, ".")

from chatdesk.auth.hashing import generate_api_key
from chatdesk.core.config import Settings
from chatdesk.core.database import Base, build_engine, build_session_factory
from chatdesk.services.project_store import ProjectExists, ProjectStore
from chatdesk.services.records import utcnow

import chatdesk.models.chat_message  # noqa: F401
import chatdesk.models.notification  # noqa: F401
import chatdesk.models.project  # noqa: F401


async def main(project_id: str) -> None:
    settings = Settings()
    engine = build_engine(settings)

    # ── Create schema ───────────────────────────────────────
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # ── Create project ──────────────────────────────────────
    store = ProjectStore(build_session_factory(engine), settings)
    try:
        project = await store.create(
            project_id=project_id,
            name="Dev Project",
            description="Local development chatbot",
            monthly_token_limit=settings.DEFAULT_MONTHLY_TOKEN_LIMIT,
            months=settings.DEFAULT_SUBSCRIPTION_MONTHS,
            now=utcnow(),
            knowledge_text="Our support desk is open Monday to Friday, 9am to 5pm.",
        )
    except ProjectExists:
        project = await store.get(project_id)

    # ── Generate admin key ──────────────────────────────────
    raw_key, key_hash = generate_api_key()

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  Project:     {project.name}")
    print(f"  Project ID:  {project.project_id}")
    print(f"  Expires:     {project.expiry_date:%Y-%m-%d %H:%M} UTC")
    print(f"  Token limit: {project.monthly_token_limit}")
    print()
    print(f"  Admin Key:   {raw_key}")
    print(f"  ADMIN_API_KEY_HASH={key_hash}")
    print()
    print("  ⚠  Copy this key now. It will NEVER be shown again.")
    print("=" * 60)
    print()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "dev-project"))
