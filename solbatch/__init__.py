"""
solbatch - per-SOL batch extract/insert runner.

Fans (SOL, procedure) tasks across a self-scaling pool of database workers.
"""

__version__ = "0.1.0"
