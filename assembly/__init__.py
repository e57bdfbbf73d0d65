"""
Exam Assembly Pipeline
assembly/

Steps:
1. Distributor           — split requirement quotas across exam sections (two-pass)
2. Bank Fetch            — concurrent item-bank reads per section assignment
3. Duplicate Filter      — text redundancy + concept fingerprint screening
4. Intent Allocation     — non-repeating (concept, operation, answer shape) per topic/level
5. Generation            — remote LLM fill for shortfalls, structurally validated
6. Template Fallback     — deterministic items when generation is short or offline
7. Verify Totals         — exact per-requirement and per-section counts
8. Persist               — insert generated items, increment usage_count
"""
