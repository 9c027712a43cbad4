"""Schema package exports."""

from .mcq import AuditedMCQ, CleaningResult, DifficultyWeights, EssayGradeResult, GenerationParams, MCQBatchPayload, MCQItem, MCQOptions

__all__ = ["AuditedMCQ", "CleaningResult", "DifficultyWeights", "EssayGradeResult", "GenerationParams", "MCQBatchPayload", "MCQItem", "MCQOptions"]
