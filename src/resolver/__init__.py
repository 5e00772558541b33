"""Resolver package for template rendering and cross-stack references."""

from resolver.base import (
    TemplateResolutionError,
    EmptySource,
    MalformedReference,
    UnresolvedReference,
    CyclicDependency,
    RemoteFetchError,
    Reference,
    scan,
    dependencies,
)
from resolver.template import TemplateResolver, load_body

__all__ = [
    "TemplateResolutionError",
    "EmptySource",
    "MalformedReference",
    "UnresolvedReference",
    "CyclicDependency",
    "RemoteFetchError",
    "Reference",
    "scan",
    "dependencies",
    "TemplateResolver",
    "load_body",
]
