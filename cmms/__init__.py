"""
CMMS Core
=========

Maintenance ticket lifecycle and assignment engine.

Bounded contexts:
- tickets: ticket entity, state machine, SLA deadline
- teams: capacity-constrained team assignment
- performance: technician points ledger
- escalation: SLA clock and escalation sweep
- jobs: background orchestrator
"""

__version__ = "1.0.0"
