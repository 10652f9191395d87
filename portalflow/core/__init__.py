"""
Core interpreter: templates, graph index, nodes, context, step executors,
graph engine and run orchestrator.
"""
