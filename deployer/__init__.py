"""Multi-runtime application deployment service package."""
