"""
AuthenticityClassifier — detector call plus categorical verdict and gate.

Two threshold schemes are applied, both configurable:

    display verdict   AUTHENTIC ≥ authentic_threshold (90)
                      INCONCLUSIVE ≥ inconclusive_threshold (70)
                      SYNTHETIC otherwise
    pipeline gate     natural ≤ synthetic_block_threshold (50) → BLOCK
                      natural < inconclusive_threshold         → PROCEED_FLAGGED
                      otherwise                                → PROCEED

An item at 55% natural is SYNTHETIC for display yet passes the gate flagged
INCONCLUSIVE; the flag changes nothing downstream.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from mediatag.config import settings
from mediatag.integrations import detector as detector_module
from mediatag.schemas.media import DetectionResult, GateDecision, MediaItem, Verdict

logger = logging.getLogger(__name__)


def categorize(
    natural_probability: int,
    authentic_threshold: Optional[int] = None,
    inconclusive_threshold: Optional[int] = None,
) -> Verdict:
    authentic = settings.authentic_threshold if authentic_threshold is None else authentic_threshold
    inconclusive = settings.inconclusive_threshold if inconclusive_threshold is None else inconclusive_threshold

    if natural_probability >= authentic:
        return Verdict.AUTHENTIC
    if natural_probability >= inconclusive:
        return Verdict.INCONCLUSIVE
    return Verdict.SYNTHETIC


def gate(
    natural_probability: int,
    block_threshold: Optional[int] = None,
    inconclusive_threshold: Optional[int] = None,
) -> GateDecision:
    block = settings.synthetic_block_threshold if block_threshold is None else block_threshold
    inconclusive = settings.inconclusive_threshold if inconclusive_threshold is None else inconclusive_threshold

    if natural_probability <= block:
        return GateDecision.BLOCK
    if natural_probability < inconclusive:
        return GateDecision.PROCEED_FLAGGED
    return GateDecision.PROCEED


@dataclass(frozen=True)
class Classification:
    result: DetectionResult
    verdict: Verdict
    decision: GateDecision

    @property
    def blocked(self) -> bool:
        return self.decision == GateDecision.BLOCK

    @property
    def flagged(self) -> bool:
        return self.decision == GateDecision.PROCEED_FLAGGED

    @property
    def summary(self) -> str:
        return (
            f"{self.verdict.value}: natural {self.result.natural_probability}% / "
            f"synthetic {self.result.synthetic_probability}%"
        )


class AuthenticityClassifier:
    async def classify(self, item: MediaItem) -> Classification:
        result = await detector_module.detect(item)
        natural = result.natural_probability
        classification = Classification(result=result, verdict=categorize(natural), decision=gate(natural))
        logger.info(f"[CLASSIFIER] {item.display_name}: {classification.summary} → {classification.decision.value}")
        return classification


authenticity_classifier = AuthenticityClassifier()
