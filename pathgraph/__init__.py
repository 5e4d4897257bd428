"""
Learning Path Graph Engine
Models a learning path as a typed directed graph, validates it, edits it
through a headless visual-editor session, linearizes it for learners and
reports their progress as xAPI statements.
"""

__version__ = "0.1.0"
