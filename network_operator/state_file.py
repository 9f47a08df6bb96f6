"""YAML state files for offline reconciliation.

A state file holds a list of API objects under a top-level ``objects`` key.
It is read and written with ruamel.yaml so hand-written comments and
formatting survive a reconcile round trip.
What each field manager last applied is kept under ``appliedFields`` so a
later run prunes fields a manager stopped applying.
"""

import shutil
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from network_operator.client import InMemoryCluster
from network_operator.exceptions import NetworkOperatorError
from network_operator.logging_config import get_logger
from network_operator.models.objects import KubeObject

logger = get_logger(__name__)

APPLIED_FIELDS_KEY = "appliedFields"


class StateFileError(NetworkOperatorError):
    """Exception raised when a state file cannot be read or written."""

    pass


class ClusterStateFile:
    """Loads and saves cluster objects from a YAML state file."""

    def __init__(self, path: str | Path):
        """Initialize the state file.

        Args:
            path: Path to the YAML state file
        """
        self.path = Path(path)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=2, offset=0)

    def read(self) -> CommentedMap:
        """Read the state file and return the parsed document.

        Raises:
            StateFileError: If file cannot be read or parsed
        """
        logger.debug(f"Reading state file: {self.path}")

        if not self.path.exists():
            raise StateFileError(
                f"State file not found: {self.path}",
                f"Expected location: {self.path.absolute()}",
            )

        try:
            with open(self.path) as f:
                data = self.yaml.load(f)
        except Exception as e:
            logger.error(f"Failed to read state file: {e}", exc_info=True)
            raise StateFileError(
                f"Failed to read state file: {e}",
                f"The file may have invalid YAML syntax. Check the file at: {self.path.absolute()}",
            ) from e

        if data is None:
            data = CommentedMap()
        if not isinstance(data, dict) or not isinstance(data.get("objects", []), list):
            raise StateFileError(
                "State file must be a mapping with an 'objects' list",
                f"Check the file at: {self.path.absolute()}",
            )
        return data

    def load(self) -> InMemoryCluster:
        """Build an in-memory cluster holding every object in the file."""
        data = self.read()
        objects = []
        for index, manifest in enumerate(data.get("objects") or []):
            try:
                objects.append(KubeObject.from_manifest(_plain(manifest)))
            except (KeyError, ValueError) as e:
                raise StateFileError(
                    f"Object #{index} in state file is invalid: {e}",
                    "Each object needs apiVersion, kind and metadata.name",
                ) from e
        logger.info(f"Loaded {len(objects)} objects from {self.path}")
        applied = _plain(data.get(APPLIED_FIELDS_KEY) or [])
        return InMemoryCluster(objects, applied_fields=applied)

    def save(self, cluster: InMemoryCluster) -> None:
        """Write every object of the cluster back to the file.

        The previous file is kept next to it with a ``.backup`` suffix.
        """
        data = self.read() if self.path.exists() else CommentedMap()
        data["objects"] = [obj.to_manifest() for obj in cluster.objects()]
        applied = cluster.applied_fields()
        if applied:
            data[APPLIED_FIELDS_KEY] = applied
        else:
            data.pop(APPLIED_FIELDS_KEY, None)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                backup_path = self.path.with_suffix(self.path.suffix + ".backup")
                logger.debug(f"Creating backup at: {backup_path}")
                shutil.copy2(self.path, backup_path)
            with open(self.path, "w") as f:
                self.yaml.dump(data, f)
        except OSError as e:
            logger.error(f"OS error writing state file: {e}")
            raise StateFileError(
                f"Failed to write state file: {e}",
                "Check disk space and file system permissions",
            ) from e

        logger.info(f"Wrote {len(data['objects'])} objects to {self.path}")


def _plain(value):
    """Convert ruamel containers into plain dicts and lists."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value
