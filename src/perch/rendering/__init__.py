"""Render pipeline — nested slot composition with suspense streaming.

Layouts, templates, error/not-found boundaries, and loading fallbacks
compose root to leaf.  Control flow travels as signal values
(:mod:`perch.rendering.signals`), data through a pass-scoped
deduplicating cache (:mod:`perch.rendering.cache`).
"""
