"""
Workflow Kernel - approval workflow core

An append-only, role-gated approval workflow with:
- One generic transition engine for every request kind
- Atomic compare-and-swap writes (no lost updates)
- Append-only audit history per request
- Worklist queries per approver role
"""

__version__ = "0.1.0"
