"""Built-in role skills."""

from phasegate.skills.defaults import DEFAULT_SKILLS, get_default_skill

__all__ = ["DEFAULT_SKILLS", "get_default_skill"]
