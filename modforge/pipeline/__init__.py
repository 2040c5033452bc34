"""Planning and execution: segments -> Plan -> steps -> run.

Nothing in this package starts a process; side effects live in
``modforge.services`` and reach the pipeline as lookups and step handlers.
"""
