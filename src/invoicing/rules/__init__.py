"""Правила движка: RuleSet из YAML."""

from .rule_loader import RuleSet, CenterPolicy, DEFAULT_RULES_FILE

__all__ = ["RuleSet", "CenterPolicy", "DEFAULT_RULES_FILE"]
