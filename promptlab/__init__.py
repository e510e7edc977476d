"""
promptlab: dependency-ordered execution of LLM task workflows.
"""

__version__ = "0.1.0"
