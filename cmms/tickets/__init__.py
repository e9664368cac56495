"""
Tickets Module
==============

Maintenance ticket lifecycle: creation with an SLA deadline, the
noticed -> working -> completed -> archived state machine, claims and
assignment, and ticket queries.
"""
