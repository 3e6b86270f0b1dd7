#!/usr/bin/env python3
"""
Seed script: creates demo users (officer, manager, two evaluators, committee)
with API keys and one empty evaluation owned by the officer.
Run after migrations: python scripts/seed.py
"""

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from evalflow.auth.middleware import hash_api_key
from evalflow.database import async_session_maker, engine
from evalflow.engine.aggregate import Evaluation


USERS = [
    # (API key, name, email, roles) - demo keys, print these for the user
    ("sk_demo_officer", "Olivia Officer", "officer@example.org", ["PROCUREMENT_OFFICER"]),
    ("sk_demo_manager", "Marcus Manager", "manager@example.org", ["PROCUREMENT_MANAGER"]),
    ("sk_demo_evaluator1", "Evan Evaluator", "evaluator1@example.org", ["PROCUREMENT_OFFICER"]),
    ("sk_demo_evaluator2", "Eve Evaluator", "evaluator2@example.org", ["PROCUREMENT_OFFICER"]),
    ("sk_demo_committee", "Cora Committee", "committee@example.org", ["EVALUATION_COMMITTEE"]),
]

EVAL_NUMBER = "EVAL-DEMO-001"


async def seed():
    now = datetime.now(timezone.utc)

    async with async_session_maker() as session:
        user_ids: dict[str, int] = {}
        for api_key, name, email, roles in USERS:
            result = await session.execute(
                text("SELECT user_id FROM users WHERE email = :email"),
                {"email": email},
            )
            row = result.fetchone()
            if row:
                user_ids[api_key] = row[0]
                print(f"User {email} already exists, using existing.")
                continue
            result = await session.execute(
                text("""
                    INSERT INTO users (name, email, api_key_hash, roles, created_at)
                    VALUES (:name, :email, :hash, CAST(:roles AS jsonb), :now)
                    RETURNING user_id
                """),
                {
                    "name": name,
                    "email": email,
                    "hash": hash_api_key(api_key),
                    "roles": json.dumps(roles),
                    "now": now,
                },
            )
            user_ids[api_key] = result.scalar_one()
        await session.commit()

        result = await session.execute(
            text("SELECT evaluation_id FROM evaluations WHERE eval_number = :num"),
            {"num": EVAL_NUMBER},
        )
        row = result.fetchone()
        if row:
            evaluation_id = row[0]
            print("Demo evaluation already exists.")
        else:
            blank = Evaluation(
                eval_number=EVAL_NUMBER,
                rfq_number="RFQ/DEMO/001",
                rfq_title="Office printers and consumables",
                created_by=user_ids["sk_demo_officer"],
            )
            sections = blank.model_dump(mode="json", include={"sections"})["sections"]
            result = await session.execute(
                text("""
                    INSERT INTO evaluations
                    (eval_number, rfq_number, rfq_title, status, created_by, sections, version, created_at, updated_at)
                    VALUES (:num, :rfq, :title, 'PENDING', :owner, CAST(:sections AS jsonb), 0, :now, :now)
                    RETURNING evaluation_id
                """),
                {
                    "num": blank.eval_number,
                    "rfq": blank.rfq_number,
                    "title": blank.rfq_title,
                    "owner": blank.created_by,
                    "sections": json.dumps(sections),
                    "now": now,
                },
            )
            evaluation_id = result.scalar_one()
            await session.commit()

    await engine.dispose()

    print("Seed complete!")
    for api_key, name, _, roles in USERS:
        print(f"  {name:<16} {', '.join(roles):<22} Authorization: Bearer {api_key}")
    print("Example: curl -X PATCH http://localhost:8000/v1/evaluations/%d/sections/A \\" % evaluation_id)
    print('  -H "Authorization: Bearer sk_demo_officer" \\')
    print('  -H "Content-Type: application/json" \\')
    print('  -d \'{"payload":{"fundedBy":"GOJ","procurementMethod":"NATIONAL_COMPETITIVE_BIDDING"}}\'')


if __name__ == "__main__":
    asyncio.run(seed())
