"""Release policy and its enforcement points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from m8release.errors import PolicyError

NetworkMode = Literal["online", "offline"]
PublishMode = Literal["independent"]


@dataclass(frozen=True, slots=True)
class Policy:
    """``[policy]`` table: lock strictness, network access and how platforms publish."""

    require_frozen_lock: bool = False
    network_mode: NetworkMode = "online"
    publish_mode: PublishMode = "independent"


def ensure_frozen_policy(*, policy: Policy, frozen: bool) -> None:
    if policy.require_frozen_lock and not frozen:
        raise PolicyError(
            "This project only builds releases against a frozen lockfile.",
            hint="Run `m8release lock`, commit m8release.lock, then pass --frozen.",
            context={"operation": "check_lock", "require_frozen_lock": "true"},
        )


def ensure_network_allowed(*, policy: Policy, operation: str) -> None:
    if policy.network_mode == "offline":
        raise PolicyError(
            f"`{operation}` needs the network but the release policy is offline.",
            hint="Set [policy].network_mode = 'online' or pin a local frontend source.",
            context={"operation": operation, "network_mode": policy.network_mode},
        )
