from jsonpipe.domain.context.context_manager import ContextManager
from jsonpipe.domain.context.placeholder_evaluator import evaluate_placeholders

__all__ = ["ContextManager", "evaluate_placeholders"]
