"""
Task lifecycle and multi-actor workflow engine.
"""
