"""Centralized prompt catalog.

All phase prompts live in ``templates.yaml`` (next to this module) and are
loaded by :class:`PromptCatalog`.
"""

from tag_mixer.prompts.catalog import PromptCatalog

__all__ = ["PromptCatalog"]
