"""agentpipe: typed, resumable pipelines for agent workflows."""

__version__ = "0.1.0"
