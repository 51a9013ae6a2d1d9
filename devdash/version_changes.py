"""Component version changes from diffs of ``<dir>/<env>-versions.yaml``.

A versions file pins each deployed component to a build:

    components:
      - name: checkout-service
        version: '@fx-component/checkout-service-abc1234'

A deployment commit bumps one or more pins, so its patch contains, per
component, a ``- name:`` context line followed by a removed and an added
``version:`` line. Parsing is a single line-oriented pass; malformed input
simply yields no changes.
"""
import re
from typing import List, Optional, Pattern

from .models import ComponentVersionChange

DEFAULT_SCOPE = "@fx-component"
UNKNOWN_ENVIRONMENT = "unknown"

ENV_FILE_RE = re.compile(r"/([^/]+)-versions\.yaml$")
NAME_RE = re.compile(r"^\s*- name:\s*(\S+)")


def _version_re(marker: str, scope: str) -> Pattern[str]:
    return re.compile(
        rf"^{re.escape(marker)}\s*version:\s*['\"]?{re.escape(scope)}/(\S+?)-([a-f0-9]{{7,}})['\"]?"
    )


def environment_from_filename(filename: str) -> str:
    """``mach-config/prd-prem-versions.yaml`` -> ``prd-prem``."""
    m = ENV_FILE_RE.search(filename or "")
    return m.group(1) if m else UNKNOWN_ENVIRONMENT


def is_versions_file(filename: str, config_dir: str = "mach-config") -> bool:
    return filename.startswith(f"{config_dir}/") and filename.endswith("-versions.yaml")


def parse_version_changes(
    patch: Optional[str],
    filename: str,
    *,
    scope: str = DEFAULT_SCOPE,
) -> List[ComponentVersionChange]:
    environment = environment_from_filename(filename)
    removed_re = _version_re("-", scope)
    added_re = _version_re("+", scope)

    changes: List[ComponentVersionChange] = []
    current_component = ""
    from_version = ""
    to_version = ""

    for line in (patch or "").split("\n"):
        m = NAME_RE.match(line)
        if m:
            current_component = m.group(1)
            continue

        m = removed_re.match(line)
        if m:
            from_version = m.group(2)
            if not current_component:
                current_component = m.group(1)
            continue

        m = added_re.match(line)
        if m:
            to_version = m.group(2)
            if not current_component:
                current_component = m.group(1)
            if current_component and from_version and to_version:
                changes.append(
                    ComponentVersionChange(
                        componentName=current_component,
                        componentPath=f"components/{current_component}",
                        fromVersion=from_version,
                        toVersion=to_version,
                        environment=environment,
                    )
                )
                # name persists for the next removed/added pair
                from_version = ""
                to_version = ""

    return changes
