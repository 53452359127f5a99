from rule_anon.app import RuleAnonApp

__all__ = ["RuleAnonApp"]
