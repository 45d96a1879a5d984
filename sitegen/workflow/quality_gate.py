"""
Quality gate - bounded regeneration.

    evaluate --(overall >= min)--> accept
    evaluate --(overall <  min)--> regenerate
    regenerate --ok--> rescored --> accept
    regenerate --RegenerationError--> accept   (original html kept)
    rescored --NonFatalScoringError--> accept  (prior score kept with new html)

``rescored`` always leads to ``accept``, so generation runs at most twice.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

import structlog

from ..config.settings import MIN_QUALITY
from ..exceptions import NonFatalScoringError, RegenerationError
from ..models import QualityScore
from ..monitoring import metrics

logger = structlog.get_logger()

RegenerateFn = Callable[[QualityScore], Awaitable[str]]
RescoreFn = Callable[[str], Awaitable[QualityScore]]


class GateState(str, Enum):
    EVALUATE = "evaluate"
    REGENERATE = "regenerate"
    RESCORED = "rescored"
    ACCEPT = "accept"


@dataclass(frozen=True)
class GateOutcome:
    html: str
    quality: QualityScore
    regenerated: bool
    transitions: Tuple[GateState, ...]
    regeneration_error: Optional[str] = None
    rescore_error: Optional[str] = None

    @property
    def score_is_stale(self) -> bool:
        return self.regenerated and self.rescore_error is not None


class QualityGate:
    def __init__(self, regenerate: RegenerateFn, rescore: RescoreFn, min_quality: float = MIN_QUALITY):
        self.regenerate = regenerate
        self.rescore = rescore
        self.min_quality = min_quality

    async def run(self, html: str, quality: QualityScore) -> GateOutcome:
        state = GateState.EVALUATE
        transitions = [state]
        regenerated = False
        regeneration_error = None
        rescore_error = None

        while state != GateState.ACCEPT:
            if state == GateState.EVALUATE:
                state = GateState.ACCEPT if quality.overall >= self.min_quality else GateState.REGENERATE

            elif state == GateState.REGENERATE:
                try:
                    html = await self.regenerate(quality)
                except RegenerationError as e:
                    regeneration_error = str(e)
                    logger.warning("quality_gate.regeneration_failed", error=regeneration_error)
                    metrics.record_regeneration("failed")
                    state = GateState.ACCEPT
                else:
                    regenerated = True
                    metrics.record_regeneration("succeeded")
                    state = GateState.RESCORED

            elif state == GateState.RESCORED:
                try:
                    quality = await self.rescore(html)
                except NonFatalScoringError as e:
                    rescore_error = str(e)
                    logger.warning("quality_gate.rescore_failed", error=rescore_error, kept_score=quality.overall)
                state = GateState.ACCEPT

            transitions.append(state)

        logger.info("quality_gate.accepted", quality=quality.overall, regenerated=regenerated,
                    path=[s.value for s in transitions])
        return GateOutcome(
            html=html,
            quality=quality,
            regenerated=regenerated,
            transitions=tuple(transitions),
            regeneration_error=regeneration_error,
            rescore_error=rescore_error,
        )
