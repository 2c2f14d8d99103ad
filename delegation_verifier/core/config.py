"""
Delegation verifier configuration constants.

Constants are organized into:
- NORMATIVE: Fixed by the KERI/ACDC protocol rules this engine enforces
- CONFIGURABLE: Defaults that deployment policy may override
- OPERATIONAL: Deployment-specific settings (env vars)

Per-call trust decisions (expected delegators, trusted roots) are NOT module
state; they are passed in a TrustPolicy so one engine can serve several
policies concurrently. The values here only seed a default policy.
"""

import os

# =============================================================================
# NORMATIVE CONSTANTS
# =============================================================================

# Maximum delegation depth when resolving delegator-of-delegator chains
MAX_DELEGATION_DEPTH: int = 5

# =============================================================================
# CONFIGURABLE DEFAULTS
# =============================================================================

# Per-witness receipt query timeout. A timeout is an absence, not an error.
WITNESS_QUERY_TIMEOUT_SECONDS: float = float(os.getenv("DV_WITNESS_QUERY_TIMEOUT", "5.0"))

# Overall deadline for gathering receipts from all witnesses
RECEIPT_DEADLINE_SECONDS: float = float(os.getenv("DV_RECEIPT_DEADLINE", "15.0"))

# Timeout for each collaborator fetch (KEL, credential)
FETCH_TIMEOUT_SECONDS: float = float(os.getenv("DV_FETCH_TIMEOUT", "5.0"))

# Maximum credential chain depth (hops from leaf to root)
MAX_CHAIN_DEPTH: int = int(os.getenv("DV_MAX_CHAIN_DEPTH", "10"))

# When True any failing level skips every higher level.
# When False (default) only a failed basic reference check gates the rest,
# so one report shows every independent failure.
STRICT_LEVEL_ORDER: bool = os.getenv("DV_STRICT_LEVEL_ORDER", "false").lower() == "true"

# Require the leaf credential's issuee to be the delegator or the delegate
REQUIRE_LEAF_BINDING: bool = os.getenv("DV_REQUIRE_LEAF_BINDING", "true").lower() == "true"


def _parse_trusted_root_issuers() -> frozenset[str]:
    """Parse comma-separated trusted root issuer AIDs from environment.

    Environment variable format:
        DV_TRUSTED_ROOT_ISSUERS=EBfdlu8R27Fbx-ehrqwImnK-8Cm79sqbAQ4MmvEAYqao,EQq7xL2...

    Returns:
        frozenset of AIDs. Empty means any root issuer is accepted.
    """
    env_value = os.getenv("DV_TRUSTED_ROOT_ISSUERS", "")
    return frozenset(aid.strip() for aid in env_value.split(",") if aid.strip())


# Root credential issuers accepted by the default policy
TRUSTED_ROOT_ISSUERS: frozenset[str] = _parse_trusted_root_issuers()

# =============================================================================
# OPERATIONAL SETTINGS
# =============================================================================

# HTTP collaborator paths (KERIA-style agent)
HTTP_LOG_PATH: str = os.getenv("DV_HTTP_LOG_PATH", "/identifiers/{aid}/events")
HTTP_RECEIPTS_PATH: str = os.getenv("DV_HTTP_RECEIPTS_PATH", "/receipts/{aid}/{sn}")
HTTP_CREDENTIAL_PATH: str = os.getenv("DV_HTTP_CREDENTIAL_PATH", "/credentials/{said}")
