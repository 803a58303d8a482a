"""
FlowChat: branching, spatial conversations with AI models.

Each message is a node on a pannable canvas; replies become children and any
node can be branched into a parallel path.
"""

__version__ = "0.3.0"
