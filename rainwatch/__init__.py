"""
Rainwatch — rain alerting and public notification governance.

Subpackages:
- engine: rule engine, intensity classifier, display blocks, threshold profiles
- alerting: trigger predicates, scoring, dedup/budget, cooldown, governor, formatting, posting
- services: key/value store, lease lock, clock, LLM gateway, resilience helpers
- db: append-only records (observations, alerts, notification log)
- pipeline: the decision cycle orchestrator and feature sources
"""

__version__ = "1.0.0"
