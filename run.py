#!/usr/bin/env python3
"""
Entry point script to run a solar project sync session.

This script should be run from the project root directory:
    python run.py [PROJECT_ID ...]

With no project ids every project the server reports is watched. Change
notifications are logged until the process is interrupted.

Environment variables:
    SOLAR_API_BASE_URL: Base URL of the solar project API (required)
    SOLAR_API_TOKEN: Bearer token for the API
    SYNC_LOG_FILE: Also write logs to this file
    SYNC_LOAD_PROJECTS: Load the project list before polling (default: true)
"""
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging() -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = os.getenv("SYNC_LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    logging.basicConfig(level=logging.INFO, format=log_format, handlers=handlers)
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def main(project_ids) -> None:
    from application.services.sync_service import SyncService
    from common.config.config import SyncConfig
    from common.context.sync_context import SyncContext
    from common.exception.exceptions import SyncClientError, user_message

    logger = logging.getLogger("run")
    config = SyncConfig.from_env()

    async with SyncService(SyncContext(config)) as service:
        user = service.context.auth_provider.current_user()
        logger.info(f"Syncing as {user.display_name} against {config.api_base_url}")

        if os.getenv("SYNC_LOAD_PROJECTS", "true").lower() == "true":
            try:
                projects = await service.load_projects()
                logger.info(f"Loaded {len(projects)} projects")
            except SyncClientError as e:
                logger.warning(f"Could not load projects: {user_message(e)}")

        service.reconciler.subscribe(
            lambda n: logger.info(
                f"[{n.type.value}] {n.entity_name} ({n.entity_id}) by {n.updated_by or 'unknown'}"
            )
        )
        service.watch_projects(project_ids)
        for project_id in project_ids:
            service.watch_daily_reports(project_id)

        await asyncio.Event().wait()


if __name__ == "__main__":
    _configure_logging()
    try:
        asyncio.run(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("Sync stopped")
