"""
Per-query pipeline, worker pool scheduling, batch search and results delivery.
"""
