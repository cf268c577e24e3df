"""Inference service for snake species classification.

Sequences one request through the pipeline:
- Frame decoding (planar YUV or encoded image bytes)
- Resize and normalization to the model input tensor
- Model invocation
- Softmax and top-K ranking
- Reference table enrichment

Only one request runs per session at a time. A request that arrives while
another is in flight is dropped, not queued. Request-scoped failures are
returned as values and never tear down the session.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..exceptions import DecodeError, InferenceError, PipelineError
from ..utils.frames import RawFrame, to_image
from ..utils.normalization import normalize as normalize_image
from ..utils.throttle import FrameThrottle
from .postprocess import rank_output
from .reference_table import ReferenceRecord
from .session import ClassifierSession, SessionContext, SessionState

logger = logging.getLogger(__name__)


class ClassifyOutcome(Enum):
    """How a classify call ended."""
    COMPLETED = "completed"
    DROPPED = "dropped"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass
class PredictionCandidate:
    """One ranked prediction joined with its reference record."""
    label: str
    probability: float
    index: int = -1
    reference: Optional[ReferenceRecord] = None

    @property
    def display_name(self) -> str:
        return self.label.replace("_", " ")

    @property
    def confidence_percent(self) -> float:
        return self.probability * 100.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "label": self.label,
            "display_name": self.display_name,
            "probability": self.probability,
            "confidence_percent": round(self.confidence_percent, 2),
            "index": self.index,
            "reference": self.reference.to_dict() if self.reference else None,
        }


@dataclass
class ClassificationResult:
    """Result of one classify call."""
    outcome: ClassifyOutcome
    candidates: List[PredictionCandidate] = field(default_factory=list)
    error: Optional[PipelineError] = None
    reason: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome == ClassifyOutcome.COMPLETED

    @property
    def top(self) -> Optional[PredictionCandidate]:
        return self.candidates[0] if self.candidates else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {
            "outcome": self.outcome.value,
            "candidates": [c.to_dict() for c in self.candidates],
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        if self.reason is not None:
            result["reason"] = self.reason
        return result


class InferenceService:
    """Runs classification requests against a ClassifierSession.

    Features:
    - Single-flight guard: concurrent requests are dropped while BUSY
    - Stream throttle: accepted stream frames are spaced by a minimum interval
    - Typed results: decode and model failures come back as values
    - Results finishing after the session is closed are discarded
    """

    def __init__(
        self,
        session: ClassifierSession,
        throttle: Optional[FrameThrottle] = None,
    ):
        self.session = session
        self.throttle = throttle or FrameThrottle(session.config.min_frame_interval_s)

    # ==================== Public API ====================

    def classify(self, frame: RawFrame, top_k: Optional[int] = None) -> ClassificationResult:
        """Classify one frame.

        Args:
            frame: YuvFrame or EncodedImage
            top_k: Number of candidates (defaults to config.top_k)

        Returns:
            ClassificationResult; never raises for request-scoped failures
        """
        context = self.session.try_begin_request()
        if context is None:
            return self._dropped()
        return self._classify_in_flight(context, frame, top_k)

    def classify_stream_frame(
        self, frame: RawFrame, top_k: Optional[int] = None
    ) -> ClassificationResult:
        """Classify a frame from a continuous stream, subject to throttling.

        The throttle only records a frame as accepted once the session has
        been claimed for it, so a frame dropped as busy never delays the next.
        """
        context = self.session.try_begin_request()
        if context is None:
            return self._dropped()
        if not self.throttle.admit():
            self.session.end_request()
            return ClassificationResult(ClassifyOutcome.DROPPED, reason="throttled")
        return self._classify_in_flight(context, frame, top_k)

    def run_stream(
        self, frames: Iterable[RawFrame], top_k: Optional[int] = None
    ) -> Iterator[ClassificationResult]:
        """Pull frames from an iterable and yield the results of accepted ones."""
        for frame in frames:
            result = self.classify_stream_frame(frame, top_k)
            if result.outcome == ClassifyOutcome.DROPPED:
                continue
            yield result

    # ==================== Pipeline ====================

    def _dropped(self) -> ClassificationResult:
        state = self.session.state
        reason = "busy" if state == SessionState.BUSY else "session %s" % state.value
        logger.debug("Request dropped: %s", reason)
        return ClassificationResult(ClassifyOutcome.DROPPED, reason=reason)

    def _classify_in_flight(
        self,
        context: SessionContext,
        frame: RawFrame,
        top_k: Optional[int],
    ) -> ClassificationResult:
        """Run the pipeline on a claimed session and release it."""
        started = time.perf_counter()
        candidates: List[PredictionCandidate] = []
        error: Optional[PipelineError] = None
        try:
            candidates = self._run_pipeline(context, frame, top_k)
        except PipelineError as e:
            error = e
        finally:
            still_open = self.session.end_request()
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        if not still_open:
            logger.warning("Session closed while a request was in flight; result discarded")
            return ClassificationResult(ClassifyOutcome.DISCARDED, elapsed_ms=elapsed_ms)

        if error is not None:
            logger.warning("Classification failed at %s: %s", error.stage, error.message)
            return ClassificationResult(
                ClassifyOutcome.FAILED, error=error, elapsed_ms=elapsed_ms)

        top = candidates[0] if candidates else None
        logger.debug("Classified in %.1f ms: %s (%.2f%%)", elapsed_ms,
                     top.label if top else None,
                     top.confidence_percent if top else 0.0)
        return ClassificationResult(
            ClassifyOutcome.COMPLETED, candidates=candidates, elapsed_ms=elapsed_ms)

    def _run_pipeline(
        self,
        context: SessionContext,
        frame: RawFrame,
        top_k: Optional[int],
    ) -> List[PredictionCandidate]:
        config = self.session.config
        k = top_k if top_k is not None else config.top_k

        try:
            image = to_image(frame)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"Could not decode frame: {e}")

        try:
            tensor = normalize_image(image, config.input_config())
        except OSError as e:
            # Truncated image data surfaces when Pillow resamples
            raise DecodeError(f"Could not read image data: {e}")
        except Exception as e:
            raise InferenceError(f"Preprocessing failed: {e}", stage="preprocess")

        try:
            output = context.model.predict(tensor)
        except Exception as e:
            raise InferenceError(f"Model invocation failed: {e}")

        try:
            ranked = rank_output(
                output, context.labels, k,
                scores_are_probabilities=config.scores_are_probabilities)
        except (TypeError, ValueError) as e:
            raise InferenceError(str(e), stage="postprocess")

        return [
            PredictionCandidate(
                label=label,
                probability=probability,
                index=index,
                reference=context.reference_table.lookup(label),
            )
            for label, probability, index in ranked
        ]
