import asyncio
import json
import os
import sys

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.db import SessionLocal, init_models
from app.modules.messaging.errors import TemplateValidationError
from app.modules.messaging.repository import RecipientRepository
from app.modules.messaging.schemas import TemplateDefinition
from app.modules.messaging.templates import TemplateStore

async def main(path: str):
    """
    Registers the templates and recipient profiles listed in a JSON file:
    {"templates": [<template definition>...], "recipients": [{"user_id": ..., "push_tokens": [...], ...}]}
    """
    with open(path) as f:
        data = json.load(f)

    await init_models()
    async with SessionLocal() as db:
        store = TemplateStore(db)
        for raw in data.get("templates", []):
            definition = TemplateDefinition.model_validate(raw)
            print(f"Registering template: {definition.key}")
            try:
                obj = await store.register(definition)
                print(f"  ...stored as version {obj.version}")
            except TemplateValidationError as e:
                print(f"  - Rejected: {'; '.join(e.errors)}")

        recipients = RecipientRepository(db)
        for raw in data.get("recipients", []):
            raw = dict(raw)
            tokens = raw.pop("push_tokens", [])
            if await recipients.get_profile(raw["user_id"]):
                print(f"  - Recipient '{raw['user_id']}' already exists. Skipping.")
                continue
            print(f"Creating recipient: {raw['user_id']}")
            await recipients.create_profile(**raw)
            for token in tokens:
                await recipients.add_push_token(raw["user_id"], token)

        print("\nCommitting all changes to the database...")
        await db.commit()
        print("Seeding complete!")

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: seed_messaging_data.py <seed.json>")
        sys.exit(1)
    asyncio.run(main(sys.argv[1]))
