from enum import Enum
from pathlib import Path

import chainplan

#
# Filesystem
#

DEPLOYMENT_DIR = Path(chainplan.__file__).parent
CONSTRUCTOR_PARAMS_DIR = DEPLOYMENT_DIR / "constructor_params"
REGISTRY_DIR = DEPLOYMENT_DIR / "registries"

LEDGER_SUFFIX = ".ledger.jsonl"

#
# Contracts
#

NULL_ADDRESS = "0x" + "0" * 40

PROXY_NAME = "TransparentUpgradeableProxy"
OZ_DEPENDENCY_NAME = "openzeppelin"
OZ_DEPENDENCY_VERSION = "5.0.0"

DEFAULT_INITIALIZER = "initialize"

#
# Networks
#

LOCAL_NETWORK_NAMES = ["local"]

#
# Orchestration
#

DEFAULT_CONFIRMATION_TIMEOUT = 300  # seconds
DEFAULT_WORKERS = 1
DEFAULT_SUBMISSION_RETRIES = 0


class DeploymentKind(Enum):
    DIRECT = "direct"
    PROXIED = "proxied"


class StepStatus(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class WiringStatus(Enum):
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
