"""Custom Resource Orchestrator (CRO).

Control-plane adapter for infrastructure resources the template engine does
not support natively:
 - compute services (create / update / scale-to-zero-then-delete)
 - task definitions (immutable, one new revision per create or update)
 - a shared, TTL-bound read-through cache of stack descriptions
 - a scale gate that keeps rack capacity above the largest public workload
"""
