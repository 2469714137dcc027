"""Cross-framework control mapping and gap analysis."""

__version__ = "0.1.0"
