"""
Blueprint - batch template compositor.

Renders every combination of a template's asset aliases into PNG images.
"""

__version__ = "1.0.0"
