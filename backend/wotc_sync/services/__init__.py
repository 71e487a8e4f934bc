"""
Sync engine services: repository, retry, orchestration, scheduling, health
and state submissions.
"""
