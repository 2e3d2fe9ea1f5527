"""
NodeFlow - execute node/edge pipelines of commands, prompts and text.

Submit a graph of shell commands, model prompts, static inputs and preview
nodes; the engine orders it, runs it step by step and streams each node's
status back to the caller.
"""

__version__ = "1.0.0"
