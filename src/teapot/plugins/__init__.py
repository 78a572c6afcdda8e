"""Pluggable components for teapot."""
