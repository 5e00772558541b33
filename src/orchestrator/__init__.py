"""Orchestration engine for dependency-aware multi-stack operations.

Builds a dependency graph from cross-stack references and runs deploy,
terminate and set-policy across a batch of stacks with per-stack results.
"""
