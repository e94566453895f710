"""Error types raised by the halts analysis pipeline."""

from __future__ import annotations

from typing import Any


class HaltsAnalysisError(Exception):
    """Base error carrying the failing stage and the inputs needed to reproduce it."""

    stage = "analysis"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return f"[{self.stage}] {self.message}"
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"[{self.stage}] {self.message} ({details})"


class GenerationError(HaltsAnalysisError):
    stage = "generate"


class FitFailure(HaltsAnalysisError):
    stage = "fit"

    def __init__(self, model: str, message: str, **context: Any) -> None:
        super().__init__(f"{model}: {message}", model=model, **context)
        self.model = model


class PredictionError(HaltsAnalysisError):
    stage = "predict"
