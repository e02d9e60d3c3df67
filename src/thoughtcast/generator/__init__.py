"""Content generation for the live terminal.

The engine treats the text generator as a black box: given a prompt and
generation parameters it returns text or raises GenerationError. This
package holds the abstract interface and the concrete providers.
"""

from thoughtcast.generator.base import ContentSource, GenerationError, GenerationParams
from thoughtcast.generator.factory import create_content_source

__all__ = ["ContentSource", "GenerationError", "GenerationParams", "create_content_source"]
