"""
LLM-driven document organiser.

This package contains:

- configuration loading and logging setup
- token budgeting (tokenizer wrapper, context manager)
- the categorization engine (prompts, summarization, strict output validation)
- the category registry and destination discovery
- text extraction and the collision-safe file mover
- the bounded worker pool and the pipeline that ties everything together
"""

from .categorizer import AnalysisResult, CategorizationEngine, parse_and_validate
from .context_manager import ContextBudget, ContextManager, TruncationStrategy, get_budgets
from .pipeline import Pipeline, RunSummary
from .registry import CategoryRegistry, discover_categories

__all__ = [
    "AnalysisResult",
    "CategorizationEngine",
    "CategoryRegistry",
    "ContextBudget",
    "ContextManager",
    "Pipeline",
    "RunSummary",
    "TruncationStrategy",
    "discover_categories",
    "get_budgets",
    "parse_and_validate",
]
