"""
Rainwatch alerting — from triggered display blocks to public posts.

Modules:
- triggers: per-scope gates deciding which blocks become candidates
- scoring: candidate urgency score and metro grouping
- dedup: content-hash claims and the daily budget
- cooldown: per-area quiet period with escalation overrides
- formatter: bilingual copy (LLM primary, template fallback)
- channels: X (Twitter) submission
- governor: the ordered decision pipeline over one cycle's candidates
"""
