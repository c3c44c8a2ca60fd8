# ============================================================================
# SCHEMA DEPLOYMENT TRIGGER
# ============================================================================
# STATUS: Trigger layer - POST /api/admin/schema/deploy
# PURPOSE: Deploy the assessment schema DDL to PostgreSQL
# EXPORTS: schema_deploy_handler
# DEPENDENCIES: infrastructure.schema_sql
# ============================================================================
"""
Schema Deployment Trigger.

POST /api/admin/schema/deploy?confirm=yes[&portal=false]

All statements are CREATE ... IF NOT EXISTS, so repeated deploys are safe.
Set portal=false on databases where the portal owns its tables.
"""

import azure.functions as func
import json
from datetime import datetime, timezone

from config import get_config
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "SchemaDeploy")


def schema_deploy_handler(req: func.HttpRequest, deployer=None) -> func.HttpResponse:
    if req.params.get('confirm', '').lower() != 'yes':
        return func.HttpResponse(
            json.dumps({
                "success": False,
                "error": "Schema deployment requires confirm=yes",
                "error_type": "ValidationError",
                "usage": "POST /api/admin/schema/deploy?confirm=yes"
            }),
            status_code=400,
            mimetype="application/json"
        )

    if deployer is None and get_config().assessment.storage_backend != "postgres":
        return func.HttpResponse(
            json.dumps({
                "success": False,
                "error": "Schema deployment requires the postgres storage backend",
                "error_type": "ValidationError"
            }),
            status_code=400,
            mimetype="application/json"
        )

    include_portal = req.params.get('portal', 'true').lower() != 'false'

    try:
        if deployer is None:
            from infrastructure import RepositoryFactory
            deployer = RepositoryFactory.create_schema_deployer()

        statements = deployer.deploy(include_portal_tables=include_portal)
        logger.info(f"✅ Schema deployed: {statements} statements (portal tables: {include_portal})")

        return func.HttpResponse(
            json.dumps({
                "success": True,
                "schema": deployer.schema_name,
                "statements_executed": statements,
                "portal_tables": include_portal,
                "deployed_at": datetime.now(timezone.utc).isoformat()
            }),
            status_code=200,
            mimetype="application/json"
        )

    except Exception as e:
        logger.error(f"❌ Schema deployment failed: {e}")
        return func.HttpResponse(
            json.dumps({
                "success": False,
                "error": str(e),
                "error_type": type(e).__name__
            }),
            status_code=500,
            mimetype="application/json"
        )
