"""Optional integrations.

- journal: JSONL run journal
"""
