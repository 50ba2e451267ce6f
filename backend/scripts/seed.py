"""Database seed script — creates a demo objective, key result, data-table integration and a scheduled workflow.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DEMO_WORKFLOW = "Daily done-items sync"


async def seed():
    """Seed the database with demo data. Safe to run repeatedly."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models import KeyResult, Objective, Workflow
    from services.integration_service import IntegrationService
    from services.workflow_service import WorkflowService
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    async with AsyncSessionLocal() as db:
        # 1. Objective and key result
        result = await db.execute(select(Objective).where(Objective.title == "Ship more work"))
        objective = result.scalar_one_or_none()
        if not objective:
            objective = Objective(title="Ship more work", current_value=0, target_value=100, unit="%")
            db.add(objective)
            await db.flush()
            print(f"[seed] Created objective: {objective.title} ({objective.id})")

        result = await db.execute(select(KeyResult).where(KeyResult.objective_id == objective.id))
        key_result = result.scalars().first()
        if not key_result:
            key_result = KeyResult(
                objective_id=objective.id,
                title="Work items done",
                start_value=0,
                current_value=0,
                target_value=50,
                unit="items",
            )
            db.add(key_result)
            await db.flush()
            print(f"[seed] Created key result: {key_result.title} ({key_result.id})")

        # 2. Integration over the internal tables
        integrations = IntegrationService(db)
        connections = await integrations.list_connections()
        tables = next((c for c in connections if c.platform_type == "data_table"), None)
        if not tables:
            tables = await integrations.create_connection(
                name="Internal tables",
                platform_type="data_table",
                settings={"table": "work_items"},
            )
            print(f"[seed] Created integration: {tables.name} ({tables.id})")

        # 3. Scheduled workflow feeding the key result
        result = await db.execute(
            select(Workflow).where(Workflow.name == DEMO_WORKFLOW, Workflow.is_deleted == False)
        )
        if not result.scalar_one_or_none():
            workflow = await WorkflowService(db).create_workflow(
                name=DEMO_WORKFLOW,
                description="Counts done work items every morning and records the number on the key result",
                trigger_type="schedule",
                trigger_config={"frequency": "daily", "timezone": "UTC"},
                steps=[
                    {
                        "id": "count_done",
                        "type": "data_source_query",
                        "name": "Count done items",
                        "config": {
                            "sourceTable": "work_items",
                            "filters": [{"field": "status", "operator": "equals", "value": "Done"}],
                            "aggregation": "count",
                            "resultVariable": "doneCount",
                        },
                    },
                    {
                        "id": "update_kr",
                        "type": "strategy_update",
                        "name": "Update key result",
                        "config": {
                            "type": "key_result",
                            "targetId": key_result.id,
                            "updateType": "set_value",
                            "value": "{doneCount}",
                        },
                    },
                    {
                        "id": "log",
                        "type": "log_event",
                        "name": "Log result",
                        "config": {"message": "Done items on {today}: {doneCount}"},
                    },
                ],
            )
            print(f"[seed] Created workflow: {workflow.name} ({workflow.id})")
        else:
            print(f"[seed] Workflow exists: {DEMO_WORKFLOW}")

        await db.commit()

    print("[seed] Done.")


if __name__ == "__main__":
    asyncio.run(seed())
