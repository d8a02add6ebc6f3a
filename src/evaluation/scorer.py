# src/evaluation/scorer.py — v1
"""Quality assessment of generated assets.

Scores are on a 0-100 scale. The overall score weights geometry 30%,
visual 40% and functional 30%, and is clamped to [0, 100].
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, computed_field

from gen3d.core.models import ResultReference

logger = logging.getLogger(__name__)

GEOMETRY_WEIGHT = 0.3
VISUAL_WEIGHT = 0.4
FUNCTIONAL_WEIGHT = 0.3


def _clamp(score: float) -> float:
    return max(0.0, min(100.0, score))


class QualityAssessment(BaseModel):
    """Component scores for one generated asset."""

    geometry_score: float
    visual_score: float
    functional_score: float
    face_count: int | None = None
    vertex_count: int | None = None
    file_size_kb: int | None = None
    processing_time_s: float | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_score(self) -> float:
        return _clamp(
            GEOMETRY_WEIGHT * self.geometry_score
            + VISUAL_WEIGHT * self.visual_score
            + FUNCTIONAL_WEIGHT * self.functional_score
        )

    @property
    def quality_level(self) -> str:
        s = self.overall_score
        if s >= 90:
            return "excellent"
        if s >= 80:
            return "good"
        if s >= 70:
            return "fair"
        if s >= 60:
            return "poor"
        return "bad"


def geometry_score(face_count: int, vertex_count: int) -> float:
    """Penalize implausible face counts and vertex/face ratios.

    5k-15k faces is the sweet spot; below 1k loses detail, above 20k
    costs render time.
    """
    score = 100.0
    if face_count < 1000:
        score -= 30
    elif face_count > 20000:
        score -= 20
    if face_count > 0:
        ratio = vertex_count / face_count
        if ratio < 0.5 or ratio > 0.8:
            score -= 15
    return _clamp(score)


def functional_score(processing_time_s: float | None, file_size_kb: int | None) -> float:
    score = 100.0
    if processing_time_s is not None:
        if processing_time_s > 120:
            score -= 40
        elif processing_time_s > 60:
            score -= 20
    if file_size_kb is not None:
        size_mb = file_size_kb / 1024
        if size_mb > 20:
            score -= 30
        elif size_mb < 0.5:
            score -= 20
    return _clamp(score)


class BaseQualityScorer(ABC):
    """Pluggable quality assessment."""

    @abstractmethod
    async def assess(
        self, result: ResultReference, processing_time_ms: int | None = None
    ) -> QualityAssessment:
        """Score a generated asset."""


class HeuristicQualityScorer(BaseQualityScorer):
    """Scores from metadata alone; no mesh download.

    Mesh statistics can be supplied when known; otherwise geometry falls
    back to ``default_geometry``.
    """

    def __init__(
        self,
        default_geometry: float = 85.0,
        default_visual: float = 78.0,
        face_count: int | None = None,
        vertex_count: int | None = None,
        file_size_kb: int | None = None,
    ) -> None:
        self._default_geometry = default_geometry
        self._default_visual = default_visual
        self._face_count = face_count
        self._vertex_count = vertex_count
        self._file_size_kb = file_size_kb

    async def assess(
        self, result: ResultReference, processing_time_ms: int | None = None
    ) -> QualityAssessment:
        if self._face_count is not None and self._vertex_count is not None:
            geometry = geometry_score(self._face_count, self._vertex_count)
        else:
            geometry = self._default_geometry

        visual = self._default_visual
        if not result.preview_url:
            visual -= 20
        if not result.asset_url and not result.local_path:
            visual = 0.0

        seconds = processing_time_ms / 1000 if processing_time_ms is not None else None
        assessment = QualityAssessment(
            geometry_score=_clamp(geometry),
            visual_score=_clamp(visual),
            functional_score=functional_score(seconds, self._file_size_kb),
            face_count=self._face_count,
            vertex_count=self._vertex_count,
            file_size_kb=self._file_size_kb,
            processing_time_s=seconds,
        )
        logger.debug("Quality assessed: %.1f (%s)", assessment.overall_score, assessment.quality_level)
        return assessment
