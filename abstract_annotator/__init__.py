"""Annotation workbench for classifying sentences and entities of paper abstracts."""

__version__ = "1.0.0"
