"""
HTTP API for running workflows and reading execution logs.
"""
