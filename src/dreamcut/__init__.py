"""dreamcut package.

Request-to-production pipeline: asset analysis fanout, creative briefs,
production manifest validation and a retrying job queue.
"""

from . import errors, schemas

__all__ = ["errors", "schemas"]
__version__ = "0.1.0"
