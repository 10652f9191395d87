"""
Portalflow - workflow graph interpreter for document-processing portals.

Runs stored workflow graphs (API calls, conditional routing, file
delivery, email, AI-assisted lookups, imaging) over extracted document
data, logging every step.
"""

__version__ = "0.1.0"
