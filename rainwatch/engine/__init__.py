"""
Rainwatch Decision Engine — pure, deterministic building blocks.

Components:
- profiles: named threshold profiles and scoring weights
- rules: area features → pre-alert (labels, severity, confidence, sources)
- intensity: rainfall aggregates → intensity buckets, outlook summary, ranges
- blocks: per-scope display blocks derived from an observation
"""
