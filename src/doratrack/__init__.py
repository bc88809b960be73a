"""doratrack: DORA engineering metrics from commits, deployments and incidents."""

__version__ = "0.1.0"
