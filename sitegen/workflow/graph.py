"""
Site generation workflow.

Stages, in order:
    1. research-profile
    2. research-social | research-brand | research-selling-points | research-images
    3. generate-website
    4. generate-privacy-page | generate-terms-page | score-website (optional)
    5. quality gate (at most one regenerate-website + rescore-website)
    6. upload-artifacts, then update-site-status

Fan-out stages are all-or-nothing: one terminal failure fails the stage and
no partial output is passed on. Every step goes through the StepExecutor, so
re-running the workflow for the same instance skips steps that already
succeeded.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Optional

import structlog

from ..config.settings import Settings, get_settings
from ..core.cancellation import CancellationToken
from ..core.step_executor import SleepFn, StepExecutor
from ..exceptions import (
    NonFatalScoringError,
    RegenerationError,
    StageFailedError,
    TerminalStepError,
    WorkflowCancelled,
)
from ..llm.prompt_runner import PromptRunner
from ..models import PlacesData, QualityScore, SiteGenerationParams, WorkflowResult, WorkflowStatus, utc_now_iso
from ..monitoring import metrics
from ..research.aggregate import ResearchAggregate, UserInputs, dump_v3
from ..storage.object_store import ObjectStore
from ..storage.status import StatusSink
from ..storage.step_cache import DurableStepCache
from . import steps as S
from .context import WorkflowContext
from .log import SafeWorkflowLog
from .quality_gate import QualityGate

logger = structlog.get_logger()

PAGES = ("index.html", "privacy.html", "terms.html", "research.json")


def build_version(now: Optional[datetime] = None) -> str:
    """UTC ISO timestamp safe for use as an object-key segment."""
    stamp = (now or datetime.now(timezone.utc)).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return stamp.replace(":", "-").replace(".", "-")


class SiteGenerationWorkflow:
    """Runs one workflow instance end to end."""

    def __init__(
        self,
        params: SiteGenerationParams,
        runner: PromptRunner,
        cache: DurableStepCache,
        object_store: ObjectStore,
        status_sink: StatusSink,
        workflow_log: Optional[SafeWorkflowLog] = None,
        settings: Optional[Settings] = None,
        token: Optional[CancellationToken] = None,
        places: Optional[PlacesData] = None,
        instance_id: Optional[str] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.params = params
        self.instance_id = instance_id or params.site_id
        self.settings = settings or get_settings()
        self.object_store = object_store
        self.status_sink = status_sink
        self.places = places
        self.token = token or CancellationToken(self.instance_id)
        self.log = (workflow_log or SafeWorkflowLog()).bind(params.org_id, params.site_id)
        self.executor = StepExecutor(self.instance_id, cache, self.log, sleep=sleep)
        self.steps = S.SiteSteps(runner, self.settings)
        self.status: Optional[WorkflowStatus] = None
        self._started = 0.0

    # ---- plumbing ----

    async def _step(self, name: str, work: Any) -> Any:
        return await self.executor.execute(name, self.settings.policy_for(name), work)

    async def _required(self, stage: str, name: str, work: Any) -> Any:
        try:
            return await self._step(name, work)
        except TerminalStepError as e:
            raise StageFailedError(stage, e) from e

    async def _fan_out(self, stage: str, named: Dict[str, Awaitable[Any]]) -> Dict[str, Any]:
        """Run steps concurrently; the first failure cancels the siblings still running."""
        tasks = {name: asyncio.ensure_future(coro) for name, coro in named.items()}
        try:
            results = await asyncio.gather(*tasks.values())
        except BaseException:
            pending = [name for name, task in tasks.items() if not task.done()]
            logger.warning("stage.fan_out_failed", instance_id=self.instance_id, stage=stage, cancelling=pending)
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise
        return dict(zip(tasks.keys(), results))

    async def _set_status(self, status: WorkflowStatus, **fields: Any) -> None:
        """Best-effort coarse status update; sink failures are only logged."""
        self.status = status
        try:
            await self.status_sink.update_status(self.params.site_id, status.value, **fields)
        except Exception as e:
            logger.warning("status.update_failed", site_id=self.params.site_id, status=status.value, error=str(e))
        self.log.event("workflow.status_update", phase=status.value, message=f"Status changed to {status.value}")

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    # ---- run ----

    async def run(self) -> WorkflowResult:
        self._started = time.monotonic()
        p = self.params
        logger.info("workflow.started", instance_id=self.instance_id, site_id=p.site_id, business=p.business_name)
        self.log.event("workflow.started", instance_id=self.instance_id, business_name=p.business_name,
                       message=f"Generating site for {p.business_name}")

        ctx = WorkflowContext(params=p)
        try:
            await self._set_status(WorkflowStatus.COLLECTING)
            ctx = await self.research_profile(ctx)
            ctx = await self.research_parallel(ctx)
            await self._set_status(WorkflowStatus.GENERATING)
            ctx = await self.generate(ctx)
            ctx = await self.legal_and_score(ctx)
            ctx = await self.quality_gate(ctx)
            await self._set_status(WorkflowStatus.UPLOADING)
            ctx = await self.publish(ctx)
        except WorkflowCancelled as e:
            await self._set_status(WorkflowStatus.ERROR, error=str(e))
            self.log.event("workflow.cancelled", stage=e.stage, reason=self.token.reason,
                           total_elapsed_ms=self._elapsed_ms())
            metrics.record_workflow("cancelled")
            raise
        except StageFailedError as e:
            await self._set_status(WorkflowStatus.ERROR, error=str(e))
            logger.error("workflow.failed", instance_id=self.instance_id, stage=e.stage, step=e.step_name,
                         error=str(e))
            self.log.event("workflow.failed", stage=e.stage, step=e.step_name, error=str(e),
                           total_elapsed_ms=self._elapsed_ms())
            metrics.record_workflow("error")
            raise

        self.status = WorkflowStatus.PUBLISHED
        quality = ctx.require("quality")
        result = WorkflowResult(
            site_id=p.site_id,
            slug=p.slug,
            version=ctx.require("version"),
            quality=quality.overall,
            quality_score=quality,
            html=ctx.require("html"),
            pages=list(ctx.pages),
            regenerated=ctx.regenerated,
            overall_confidence=(ctx.v3 or {}).get("provenance", {}).get("overall_confidence"),
        )
        logger.info("workflow.completed", instance_id=self.instance_id, quality=result.quality,
                    version=result.version, elapsed_ms=self._elapsed_ms())
        self.log.event("workflow.completed", version=result.version, quality=result.quality,
                       regenerated=result.regenerated, total_elapsed_ms=self._elapsed_ms())
        metrics.record_workflow("published")
        return result

    # ---- stages ----

    async def research_profile(self, ctx: WorkflowContext) -> WorkflowContext:
        self.token.raise_if_cancelled("research-profile")
        variables = S.profile_variables(ctx.params)
        profile = await self._required(
            "research-profile", S.RESEARCH_PROFILE,
            lambda: self.steps.research_json("research_profile", variables),
        )
        return ctx.advance(profile=profile)

    async def research_parallel(self, ctx: WorkflowContext) -> WorkflowContext:
        self.token.raise_if_cancelled("research-parallel")
        profile = ctx.require("profile")
        variables = S.research_variables(ctx.params, profile)

        def body(prompt_id: str):
            return lambda: self.steps.research_json(prompt_id, variables)

        results = await self._fan_out("research-parallel", {
            name: self._required("research-parallel", name, body(prompt_id))
            for name, prompt_id in S.PARALLEL_RESEARCH.items()
        })
        aggregate = ResearchAggregate(
            profile=profile,
            social=results[S.RESEARCH_SOCIAL],
            brand=results[S.RESEARCH_BRAND],
            selling_points=results[S.RESEARCH_SELLING_POINTS],
            images=results[S.RESEARCH_IMAGES],
        )
        user_inputs = UserInputs(
            business_name=ctx.params.business_name,
            business_address=ctx.params.business_address,
            business_phone=ctx.params.business_phone,
        )
        v3 = dump_v3(aggregate.to_v3(user_inputs, self.places))
        if v3["provenance"]["warnings"]:
            logger.info("research.warnings", instance_id=self.instance_id, warnings=v3["provenance"]["warnings"])
        return ctx.advance(aggregate=aggregate, v3=v3)

    async def generate(self, ctx: WorkflowContext) -> WorkflowContext:
        self.token.raise_if_cancelled("generate-website")
        variables = S.website_variables(ctx.params, ctx.require("aggregate"))
        html = await self._required(
            "generate-website", S.GENERATE_WEBSITE,
            lambda: self.steps.html("generate_website", variables),
        )
        return ctx.advance(html=html)

    async def _score(self, step_name: str, html: str) -> QualityScore:
        """Run a scoring step; exhaustion becomes NonFatalScoringError."""
        try:
            raw = await self._step(step_name, lambda: self.steps.score(html, self.params.business_name))
        except TerminalStepError as e:
            raise NonFatalScoringError(str(e), self.settings.DEFAULT_QUALITY) from e
        return QualityScore.model_validate(raw)

    async def _score_or_default(self, html: str) -> QualityScore:
        try:
            return await self._score(S.SCORE_WEBSITE, html)
        except NonFatalScoringError as e:
            logger.warning("score.defaulted", instance_id=self.instance_id, default=e.default_overall, error=str(e))
            return QualityScore.neutral(e.default_overall, reason=str(e))

    async def legal_and_score(self, ctx: WorkflowContext) -> WorkflowContext:
        self.token.raise_if_cancelled("legal-and-score")
        aggregate = ctx.require("aggregate")
        html = ctx.require("html")
        privacy_vars = S.legal_variables(ctx.params, aggregate, "privacy")
        terms_vars = S.legal_variables(ctx.params, aggregate, "terms")

        results = await self._fan_out("legal-and-score", {
            "privacy": self._required("legal-and-score", S.GENERATE_PRIVACY,
                                      lambda: self.steps.html("generate_legal_pages", privacy_vars)),
            "terms": self._required("legal-and-score", S.GENERATE_TERMS,
                                    lambda: self.steps.html("generate_legal_pages", terms_vars)),
            "score": self._score_or_default(html),
        })
        return ctx.advance(privacy_html=results["privacy"], terms_html=results["terms"], quality=results["score"])

    async def quality_gate(self, ctx: WorkflowContext) -> WorkflowContext:
        self.token.raise_if_cancelled("quality-gate")
        aggregate = ctx.require("aggregate")

        async def regenerate(prior: QualityScore) -> str:
            self.token.raise_if_cancelled("regenerate-website")
            variables = S.website_variables(ctx.params, aggregate, feedback=prior)
            try:
                return await self._step(S.REGENERATE_WEBSITE, lambda: self.steps.html("generate_website", variables))
            except TerminalStepError as e:
                raise RegenerationError(str(e)) from e

        async def rescore(html: str) -> QualityScore:
            return await self._score(S.RESCORE_WEBSITE, html)

        gate = QualityGate(regenerate, rescore, min_quality=self.settings.MIN_QUALITY)
        outcome = await gate.run(ctx.require("html"), ctx.require("quality"))
        self.log.event(
            "workflow.quality_gate",
            path=[s.value for s in outcome.transitions],
            quality=outcome.quality.overall,
            regenerated=outcome.regenerated,
            score_is_stale=outcome.score_is_stale,
            error=outcome.regeneration_error or outcome.rescore_error,
        )
        return ctx.advance(html=outcome.html, quality=outcome.quality, regenerated=outcome.regenerated)

    async def publish(self, ctx: WorkflowContext) -> WorkflowContext:
        self.token.raise_if_cancelled("publish")
        slug = ctx.params.slug
        version = build_version()
        quality = ctx.require("quality")
        artifacts = {
            "index.html": (ctx.require("html"), "text/html; charset=utf-8"),
            "privacy.html": (ctx.require("privacy_html"), "text/html; charset=utf-8"),
            "terms.html": (ctx.require("terms_html"), "text/html; charset=utf-8"),
            "research.json": (json.dumps(ctx.v3 or {}, ensure_ascii=False, indent=2), "application/json"),
        }

        async def upload() -> Dict[str, Any]:
            for page, (content, content_type) in artifacts.items():
                await self.object_store.put(f"sites/{slug}/{version}/{page}", content, content_type)
            manifest = {
                "current_version": version,
                "pages": list(artifacts),
                "quality": quality.overall,
                "updated_at": utc_now_iso(),
            }
            await self.object_store.put(f"sites/{slug}/_manifest.json", json.dumps(manifest), "application/json")
            return {
                "version": version,
                "pages": list(artifacts),
                "html": ctx.require("html"),
                "quality": quality.model_dump(mode="json"),
                "regenerated": ctx.regenerated,
            }

        # A resumed run may take another gate branch; what was uploaded wins.
        uploaded = await self._required("publish", S.UPLOAD_ARTIFACTS, upload)
        version = uploaded["version"]
        quality = QualityScore.model_validate(uploaded["quality"])

        async def flip_status() -> Dict[str, Any]:
            await self.status_sink.update_status(
                ctx.params.site_id, WorkflowStatus.PUBLISHED.value,
                current_build_version=version, quality_score=quality.overall,
            )
            return {"status": WorkflowStatus.PUBLISHED.value, "version": version}

        await self._required("publish", S.UPDATE_SITE_STATUS, flip_status)
        if self.executor.steps[S.UPDATE_SITE_STATUS].cached:
            # this run re-emitted the coarse statuses, so put the published row back
            await self._set_status(WorkflowStatus.PUBLISHED, current_build_version=version,
                                   quality_score=quality.overall)
        else:
            self.status = WorkflowStatus.PUBLISHED
            self.log.event("workflow.status_update", phase=WorkflowStatus.PUBLISHED.value, version=version,
                           message="Site published")
        return ctx.advance(version=version, pages=tuple(uploaded["pages"]), html=uploaded["html"],
                           quality=quality, regenerated=uploaded["regenerated"])
