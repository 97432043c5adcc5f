"""spec-graph: cascade changes through Requirement -> Design -> Implementation specs.

Markdown spec documents under specs/ are the source of truth. This package
diffs them against cached baselines, resolves their dependency graph, and
regenerates downstream documents through a language model.
"""

__version__ = "0.3.0"
