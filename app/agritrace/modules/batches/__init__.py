"""
Batch Registry.

- A batch is created exactly once, by its producer (farmer role)
- trace_id / batch_id are allocated here and never reused or changed
- The batch row and its two required photos commit in one transaction
"""
