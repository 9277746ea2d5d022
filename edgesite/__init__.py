"""edgesite: deployment orchestrator for server-rendered sites at the edge.

One idempotent pass turns a built site into a running topology:
  - artifact tree published into a private bucket with correct cache headers
  - server, image and revalidation compute units with least-privilege grants
  - FIFO revalidation queue wired to its consumer
  - edge distribution with an ordered, first-match-wins routing table
  - a single public URL as the only guaranteed output
"""

__version__ = "0.2.0"
__description__ = "Deployment orchestrator for server-rendered sites served from an edge distribution."

from edgesite.core.orchestrator import DeploymentError, DeploymentOrchestrator
from edgesite.cli.app import app as cli

__all__ = ["DeploymentOrchestrator", "DeploymentError", "cli", "__version__"]
