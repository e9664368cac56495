"""
Teams Module
============

Team composition for tickets: who works on a ticket and in which role,
under per-ticket team size limits, the leader gate for high-severity
work, and per-technician workload limits.
"""
