"""Condition evaluation."""

from automation_engine.conditions.evaluator import ConditionEvaluator, evaluate_condition

__all__ = ["ConditionEvaluator", "evaluate_condition"]
