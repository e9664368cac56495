"""
Infrastructure
==============

Database engine/session management and the notification transport.
"""
