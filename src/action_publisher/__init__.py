"""action-publisher: publish GitHub Actions as OCI packages.

The action tree is archived as zip and tar.gz, described by an OCI image
manifest, uploaded to the container registry and, outside enterprise
servers, bound to a provenance attestation stored as an OCI referrer.

Example:
    >>> from action_publisher.publish import PublishOrchestrator
    >>> from action_publisher.fs_helper import LocalFileOperations
    >>> orchestrator = PublishOrchestrator(options, files=LocalFileOperations(), outputs=sink)
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
