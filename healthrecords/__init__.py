"""
Revado Health Records - upload, analysis and sharing of personal health records
"""

__version__ = "1.0.0"
__author__ = "Revado Team"
__description__ = "Health records backend with document analysis, image metrics and record sharing"

__all__ = [
    "__version__",
    "__author__",
    "__description__",
]
