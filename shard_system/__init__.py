"""
Shard System - branching conversation graph with anchored sub-prompts,
rendered as a collapsible tree.
"""

__version__ = "0.1.0"
