"""Outline engine for actions, folders, tags and projects.

This package holds the entity model, the YAML-backed store, and the four
components that keep the outline consistent: position assignment within a
sibling group, parent/child hierarchy moves, the blocked-by dependency graph,
and the read-only tree projection.
"""
