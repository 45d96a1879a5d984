import argparse
import asyncio
import json
import logging
import sys
import uuid

import pydantic
import structlog

from sitegen.config.settings import Settings
from sitegen.engine import WorkflowEngine
from sitegen.llm.prompt_runner import HttpPromptRunner
from sitegen.models import SiteGenerationParams, WorkflowStatus
from sitegen.monitoring import start_metrics_server
from sitegen.storage.database import DatabaseManager, SqlAuditLog, SqlStatusSink
from sitegen.storage.object_store import LocalObjectStore
from sitegen.storage.step_cache import InMemoryStepCache, RedisStepCache
from sitegen.workflow.log import SafeWorkflowLog

logger = structlog.get_logger()


def _init_logging(level: str):
    logging.basicConfig(level=level)
    structlog.configure(
        processors=[structlog.processors.add_log_level, structlog.processors.TimeStamper(fmt="iso"), structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        cache_logger_on_first_use=True,
    )


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sitegen", description="Generate and publish a business website")
    p.add_argument("--business-name", required=True)
    p.add_argument("--address", default=None)
    p.add_argument("--phone", default=None)
    p.add_argument("--place-id", default=None)
    p.add_argument("--context", default=None, help="Additional context for the research prompts")
    p.add_argument("--site-id", default=None, help="Reuse a site id to resume a previous run (requires SITEGEN_REDIS_URL)")
    p.add_argument("--org-id", default="local")
    p.add_argument("--output-dir", default=None, help="Defaults to SITEGEN_OUTPUT_DIR")
    return p


def _make_cache(settings: Settings, resuming: bool = False):
    if settings.REDIS_URL:
        return RedisStepCache(settings.REDIS_URL, ttl_seconds=settings.STEP_CACHE_TTL_SECONDS)
    if resuming:
        logger.warning("cli.resume_without_durable_cache",
                       hint="set SITEGEN_REDIS_URL so completed steps survive between runs")
    return InMemoryStepCache()


async def arun(args: argparse.Namespace, settings: Settings) -> int:
    db = DatabaseManager(settings.DATABASE_URL)
    db.create_tables()
    cache = _make_cache(settings, resuming=args.site_id is not None)
    runner = HttpPromptRunner(settings)
    engine = WorkflowEngine(
        runner=runner,
        cache=cache,
        object_store=LocalObjectStore(args.output_dir or settings.OUTPUT_DIR),
        status_sink=SqlStatusSink(db),
        workflow_log=SafeWorkflowLog(SqlAuditLog(db)),
        settings=settings,
    )
    params = SiteGenerationParams(
        site_id=args.site_id or uuid.uuid4().hex,
        org_id=args.org_id,
        business_name=args.business_name,
        business_address=args.address,
        business_phone=args.phone,
        external_place_id=args.place_id,
        additional_context=args.context,
    )
    try:
        instance = await engine.run(params)
    finally:
        await engine.shutdown()
        await runner.aclose()
        if isinstance(cache, RedisStepCache):
            await cache.close()
        db.close()

    summary = {"site_id": params.site_id, "status": instance.status.value if instance.status else None}
    if instance.result:
        summary.update(slug=instance.result.slug, version=instance.result.version,
                       quality=instance.result.quality, pages=instance.result.pages)
    else:
        summary["error"] = instance.error
    print(json.dumps(summary, indent=2))
    return 0 if instance.status == WorkflowStatus.PUBLISHED else 1


def main():
    args = _parser().parse_args()
    try:
        settings = Settings()
    except pydantic.ValidationError as e:
        sys.stderr.write(f"Configuration error: {e}\n")
        sys.exit(2)
    _init_logging(settings.LOG_LEVEL)
    if settings.ENABLE_PROMETHEUS:
        start_metrics_server(settings.PROMETHEUS_PORT)

    try:
        sys.exit(asyncio.run(arun(args, settings)))
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted by user.\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
