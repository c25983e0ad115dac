"""Command line interface for the EPTS panel builder."""
