"""
Services Layer

Progression engine services:
- Pure algorithms (group distribution, fixtures, standings, brackets, status rules)
  accept in-memory models and return new ones; no session, no I/O
- The orchestrator combines them into one decision per result change
- progression_runner is the only service that touches a Session
"""
