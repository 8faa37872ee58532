"""Run a deployment against address and verification files on disk.

- addresses are loaded from and written through to ``addresses.json``, ``{chain: {role: address}}``
- verification inputs of this run are appended to ``verification.json``
- block numbers before the deployment are written to ``start_blocks.json``

Verification inputs and start blocks are written even if the deployment fails,
so the next run can resume.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from interchain_deploy.cache import AddressCache, JSONAddressStore
from interchain_deploy.chain import ChainName
from interchain_deploy.contracts import ContractsMap
from interchain_deploy.orchestrator import ChainOrchestrator
from interchain_deploy.router import RouterDeployer
from interchain_deploy.verification import read_verification_file, write_verification_file


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ArtifactPaths:
    addresses: Path
    verification: Path
    start_blocks: Path | None = None

    @classmethod
    def in_folder(cls, folder: Path) -> "ArtifactPaths":
        return cls(folder / "addresses.json", folder / "verification.json", folder / "start_blocks.json")


async def deploy_with_artifacts(
    config_map: Mapping[ChainName, Any],
    deployer: ChainOrchestrator | RouterDeployer,
    paths: ArtifactPaths,
    cold_start: bool = False,
) -> ContractsMap:
    """Deploy using and updating artifact files.

    :param deployer:
        Orchestrator or router deployer whose address cache gets replaced by one backed by ``paths.addresses``

    :param cold_start:
        Ignore existing addresses and deploy everything again
    """
    orchestrator = deployer.orchestrator if isinstance(deployer, RouterDeployer) else deployer
    store = JSONAddressStore(paths.addresses)
    orchestrator.deployer.cache = AddressCache.from_store(store, config_map.keys(), cold_start=cold_start)

    try:
        return await deployer.deploy(config_map)
    finally:
        existing = read_verification_file(paths.verification)
        merged = orchestrator.verification_inputs.merge_with_existing(existing)
        write_verification_file(paths.verification, merged)
        logger.info("Wrote %d new verification inputs to %s", len(orchestrator.verification_inputs), paths.verification)

        if paths.start_blocks is not None:
            paths.start_blocks.parent.mkdir(parents=True, exist_ok=True)
            with open(paths.start_blocks, "wt", encoding="utf-8") as f:
                json.dump(orchestrator.starting_block_numbers, f, indent=2)
