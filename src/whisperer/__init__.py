"""Property Whisperer - extraction and reconciliation of CRE financial documents."""

__version__ = "0.1.0"
