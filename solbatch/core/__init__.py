"""
Core run machinery: inputs, task queue, worker pool, orchestration.
"""
