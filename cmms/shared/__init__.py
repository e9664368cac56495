"""
Shared Kernel Module
====================

Generic infrastructure and application helpers used by every bounded
context (tickets, teams, performance, escalation, jobs).

DO NOT add ticket, team or ledger business rules to the shared kernel.
"""
