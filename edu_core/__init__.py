"""
EduHub offline core: local persistence and opportunistic sync for the
e-learning app.
"""

__version__ = "1.0.0"
