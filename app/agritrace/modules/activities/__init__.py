"""
Activity Ledger.

Append-only, role-stamped events per trace. Rows are never updated or deleted;
corrections are new rows. Derived metrics (shelf duration) are computed once,
at write time.
"""
