"""csvbuttler: serves records from a CSV source as JSON over HTTP."""

from .config import VERSION as __version__
