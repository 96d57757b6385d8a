"""
Support Triage Copilot.

This package provides an automated pipeline that deduplicates inbound
support messages, enriches them with knowledge base context and triages
them with an LLM, queueing suggested replies for human approval.
"""

__version__ = "1.0.0"
__author__ = "Automation Engineer"
