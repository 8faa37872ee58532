"""interchain_deploy package root.

Deploy interchain messaging contract sets across many EVM chains,
resume partially failed deployments and converge router enrollment
and ownership afterwards.

- :py:mod:`interchain_deploy.orchestrator` drives the per-chain deployment
- :py:mod:`interchain_deploy.router` runs the full router deployment pipeline
- :py:mod:`interchain_deploy.validation` pre-flight config checks
- :py:mod:`interchain_deploy.testing` in-memory chains for unit tests
"""

import sys

# Slotted dataclasses and ``X | Y`` annotations are evaluated at import time
if sys.version_info < (3, 10):
    raise ImportError(f"interchain-deploy needs Python 3.10 or later, this is {sys.version.split()[0]}")
