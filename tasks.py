import os
import logging
from functools import lru_cache
from typing import Dict, Any

from huey import SqliteHuey

from app.context import ProtoSearchApp
from config.config_manager import DEFAULT_CONFIG_PATH
from search.errors import VersionNotFoundError

HUEY_DB_PATH = os.environ.get('PROTOSEARCH_HUEY_DB', os.path.join('.protosearch', 'huey_jobs.db'))

_huey_dir = os.path.dirname(HUEY_DB_PATH)
if _huey_dir:
    os.makedirs(_huey_dir, exist_ok=True)

# Separate database for the job queue; tasks run in the huey consumer
huey = SqliteHuey(
    name='protosearch-worker',
    filename=HUEY_DB_PATH,
    immediate=os.environ.get('PROTOSEARCH_HUEY_IMMEDIATE') == '1'
)

logger = logging.getLogger('protosearch.tasks')


@lru_cache(maxsize=8)
def get_app(config_path: str) -> ProtoSearchApp:
    """Creates and caches one application per configuration file."""
    logger.info(f"Creating or reusing application for config: {config_path}")
    return ProtoSearchApp.from_config_file(config_path)


@huey.task(retries=2, retry_delay=60)
def index_version_task(module_name: str, version: str,
                       config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Rebuild the index of one version.

    Runs under a huey task lock per version, so a version queued twice is
    never indexed concurrently by two consumers; the locked duplicate is
    retried.

    Returns:
        Dict with success status and the index result or error
    """
    logger.info(f"Indexing {module_name}@{version}...")

    with huey.lock_task(f'index-version-{module_name}@{version}'):
        try:
            result = get_app(config_path).indexer.index_version(module_name, version)
        except VersionNotFoundError as e:
            # Not retriable
            logger.error(f"✗ {e}, will not retry")
            return {"success": False, "module_name": module_name, "version": version, "error": str(e)}
        except Exception as e:
            logger.error(f"✗ Indexing {module_name}@{version} failed: {e}")
            raise

    logger.info(f"✓ Indexed {module_name}@{version}: {result.entity_count} entities")
    return {"success": True, **result.to_dict()}


@huey.task()
def reindex_all_task(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Enqueue one index task per registered version for parallel execution.

    A module whose versions cannot be listed is logged and skipped.

    Returns:
        Dict with the enqueued task ids and the skipped modules
    """
    registry = get_app(config_path).backend
    task_ids = []
    skipped = []

    for module in registry.list_modules():
        try:
            versions = registry.list_versions(module.name)
        except Exception as e:
            logger.error(f"Failed to list versions of module {module.name}: {e}")
            skipped.append({"module_name": module.name, "error": str(e)})
            continue

        for version in versions:
            task = index_version_task(module.name, version.version, config_path)
            task_ids.append(str(task.id))

    logger.info(f"Enqueued {len(task_ids)} version(s) for reindexing")
    return {
        "task_ids": task_ids,
        "skipped_modules": skipped,
        "status": "enqueued"
    }
