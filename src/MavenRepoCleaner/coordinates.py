# === NAVMAP v1 ===
# {
#   "module": "MavenRepoCleaner.coordinates",
#   "purpose": "Map repository-relative paths to Maven coordinates and back",
#   "sections": [
#     {"id": "gav", "name": "Gav", "anchor": "class-gav", "kind": "class"},
#     {"id": "resolve", "name": "resolve", "anchor": "function-resolve", "kind": "function"},
#     {"id": "artifact-file-name", "name": "artifact_file_name", "anchor": "function-artifact-file-name", "kind": "function"},
#     {"id": "gav-to-path", "name": "gav_to_path", "anchor": "function-gav-to-path", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Coordinate resolution for the Maven 2 repository layout.

A local repository mirrors the layout
``group/with/slashes/artifact/version/artifact-version[-classifier].ext``.
:func:`resolve` turns a path relative to the repository root into a
:class:`Gav`, returning ``None`` for anything that does not follow the
convention.  Non-conforming paths are routine inside a cache (lock files,
partial downloads, tool state) so resolution never raises.

Examples:
    >>> gav = resolve("com/x/lib/1.0/lib-1.0-sources.jar")
    >>> (gav.group_id, gav.artifact_id, gav.version, gav.classifier, gav.extension)
    ('com.x', 'lib', '1.0', 'sources', 'jar')
    >>> artifact_file_name(gav)
    'lib-1.0-sources.jar'
    >>> resolve("com/x/lib/1.0/notes.txt") is None
    True
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "CHECKSUM_SUFFIXES",
    "METADATA_FILE_NAMES",
    "Gav",
    "artifact_file_name",
    "gav_to_path",
    "is_checksum",
    "is_metadata",
    "resolve",
]

CHECKSUM_SUFFIXES = (".md5", ".sha1")

METADATA_FILE_NAMES = frozenset(
    {
        "_maven.repositories",
        "_remote.repositories",
        "maven-metadata.xml",
        "maven-metadata.xml.md5",
        "maven-metadata.xml.sha1",
        "resolver-status.properties",
    }
)

SNAPSHOT_SUFFIX = "-SNAPSHOT"

_REPOSITORY_METADATA = re.compile(r"^maven-metadata-[^/]+\.xml(\.md5|\.sha1)?$")
_TIMESTAMPED_VERSION = re.compile(r"^(?P<stamp>\d{8}\.\d{6})-(?P<build>\d+)")


@dataclass(frozen=True)
class Gav:
    """Maven coordinate derived from an artifact file's location."""

    group_path: str
    artifact_id: str
    version: str
    base_version: str
    extension: str
    classifier: Optional[str] = None
    snapshot: bool = False
    snapshot_timestamp: Optional[str] = None
    snapshot_build_number: Optional[int] = None

    @property
    def group_id(self) -> str:
        return self.group_path.replace("/", ".")


def is_checksum(name: str) -> bool:
    """Return ``True`` for ``.md5``/``.sha1`` sidecar file names."""

    return name.endswith(CHECKSUM_SUFFIXES)


def is_metadata(name: str) -> bool:
    """Return ``True`` for repository bookkeeping files that mark live content."""

    return name in METADATA_FILE_NAMES or bool(_REPOSITORY_METADATA.match(name))


def _split_version(
    tail: str, base_version: str
) -> Optional[tuple[str, str, Optional[str], Optional[int]]]:
    """Split ``tail`` into (version, remainder, timestamp, build number)."""

    if tail.startswith(base_version):
        return base_version, tail[len(base_version) :], None, None
    if not base_version.endswith(SNAPSHOT_SUFFIX):
        return None
    prefix = base_version[: -len(SNAPSHOT_SUFFIX)] + "-"
    if not tail.startswith(prefix):
        return None
    match = _TIMESTAMPED_VERSION.match(tail[len(prefix) :])
    if match is None:
        return None
    version = prefix + match.group(0)
    return version, tail[len(version) :], match.group("stamp"), int(match.group("build"))


def resolve(relative_path: str) -> Optional[Gav]:
    """Return the coordinate addressed by ``relative_path`` or ``None``.

    Args:
        relative_path: File path relative to the repository root, using either
            separator style.  A leading separator is ignored.

    Returns:
        The parsed :class:`Gav`, or ``None`` when the path is not an artifact
        file under the Maven 2 layout.
    """

    segments = [part for part in relative_path.replace("\\", "/").split("/") if part]
    if len(segments) < 4:
        return None
    *group_parts, artifact_id, base_version, name = segments
    if any(part in (".", "..") for part in segments):
        return None
    if is_checksum(name) or is_metadata(name):
        return None

    prefix = artifact_id + "-"
    if not name.startswith(prefix):
        return None
    split = _split_version(name[len(prefix) :], base_version)
    if split is None:
        return None
    version, remainder, stamp, build = split

    classifier: Optional[str] = None
    if remainder.startswith("-"):
        classifier, dot, extension = remainder[1:].partition(".")
        if not classifier or not dot:
            return None
    elif remainder.startswith("."):
        extension = remainder[1:]
    else:
        return None
    if not extension:
        return None

    return Gav(
        group_path="/".join(group_parts),
        artifact_id=artifact_id,
        version=version,
        base_version=base_version,
        extension=extension,
        classifier=classifier,
        snapshot=base_version.endswith(SNAPSHOT_SUFFIX),
        snapshot_timestamp=stamp,
        snapshot_build_number=build,
    )


def artifact_file_name(gav: Gav) -> str:
    """Return the canonical file name for ``gav`` (the sidecar base name)."""

    name = f"{gav.artifact_id}-{gav.version}"
    if gav.classifier:
        name += f"-{gav.classifier}"
    return f"{name}.{gav.extension}"


def gav_to_path(gav: Gav) -> str:
    """Return the repository-relative path for ``gav``."""

    return "/".join((gav.group_path, gav.artifact_id, gav.base_version, artifact_file_name(gav)))
