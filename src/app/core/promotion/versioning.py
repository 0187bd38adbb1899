"""Version strategy: derive version, image tag and chart version from a ref."""

from __future__ import annotations

import re
from datetime import date

from pydantic import BaseModel, ConfigDict

from .matchers import BRANCH_PREFIX, TAG_PREFIX

RELEASE_PREFIX = f"{BRANCH_PREFIX}release/"
DEFAULT_TAG = "v0.0.0"

_SEMVER = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)")


class VersionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str
    image_tag: str
    helm_version: str


def resolve_version(
    ref: str,
    environment: str,
    short_sha: str,
    *,
    latest_tag: str | None = None,
    protected: bool = False,
    today: date | None = None,
) -> VersionInfo:
    """Compute version identifiers for a build.

    - tags are used verbatim
    - release/X.Y.Z branches become vX.Y.Z; other release branches bump the
      patch of the latest tag
    - protected environments built from a branch get a dated 1.0.0 pre-release
    - everything else is <env>-<sha> (chart 0.1.0-<env>-<sha>)
    """
    if ref.startswith(TAG_PREFIX):
        tag = ref[len(TAG_PREFIX) :]
        return VersionInfo(version=tag, image_tag=tag, helm_version=tag)

    if ref.startswith(RELEASE_PREFIX):
        release = ref[len(RELEASE_PREFIX) :]
        if _SEMVER.match(release):
            version = f"v{release}"
        else:
            match = _SEMVER.match(latest_tag or DEFAULT_TAG)
            major, minor, patch = (int(g) for g in match.groups()) if match else (0, 0, 0)
            version = f"v{major}.{minor}.{patch + 1}"
        return VersionInfo(version=version, image_tag=version, helm_version=version)

    if protected:
        stamp = (today or date.today()).strftime("%Y%m%d")
        version = f"v1.0.0-{stamp}-{short_sha}"
        return VersionInfo(version=version, image_tag=version, helm_version=version)

    version = f"{environment}-{short_sha}"
    return VersionInfo(
        version=version, image_tag=version, helm_version=f"0.1.0-{version}"
    )
