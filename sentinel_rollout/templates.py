"""Load Kubernetes manifests from YAML files and directories."""

import logging
import os
from pathlib import Path
from typing import Any, Iterator, Sequence

import yaml

from .errors import InvalidTemplateError

logger = logging.getLogger(__name__)

VALID_SUFFIXES = (".yml", ".yaml")


class TemplateSource:
    """Ordered collection of manifest files."""

    def __init__(self, paths: Sequence[str]):
        """
        Initialize template source.

        Args:
            paths: Manifest files and/or directories containing manifests
        """
        self.paths = [Path(p).expanduser().resolve() for p in paths]

    @property
    def files(self) -> list[Path]:
        files = []
        for path in self.paths:
            if path.is_dir():
                files.extend(sorted(p for p in path.iterdir() if p.name.endswith(VALID_SUFFIXES)))
            else:
                files.append(path)
        return files

    def validate(self) -> list[str]:
        """Return configuration errors for missing or unsupported paths."""
        errors = []
        if not self.paths:
            errors.append("At least one template path is required")
        suffixes = ", ".join(VALID_SUFFIXES)
        for path in self.paths:
            if path.is_dir():
                if not any(p.name.endswith(VALID_SUFFIXES) for p in path.iterdir()):
                    errors.append(
                        f"Template directory {path} does not contain any valid templates "
                        f"(supported suffixes: {suffixes})"
                    )
            elif not path.exists():
                errors.append(f"File {path} does not exist")
            elif not path.name.endswith(VALID_SUFFIXES):
                errors.append(f"File {path} does not have valid suffix (supported suffixes: {suffixes})")
        return errors

    def definitions(self) -> Iterator[tuple[str, dict[str, Any]]]:
        """
        Yield every manifest document in file order.

        Yields:
            (filename, document) pairs; empty documents are skipped

        Raises:
            InvalidTemplateError: If a file is not valid YAML or a document is not a mapping
        """
        for path in self.files:
            content = path.read_text(encoding="utf-8")
            try:
                documents = list(yaml.safe_load_all(content))
            except yaml.YAMLError as e:
                raise InvalidTemplateError(str(e), filename=path.name, content=content) from e
            for document in documents:
                if not document:
                    continue
                if not isinstance(document, dict):
                    raise InvalidTemplateError(
                        "Template is not a valid Kubernetes manifest",
                        filename=path.name,
                        content=yaml.safe_dump(document),
                    )
                logger.debug(f"Loaded {document.get('kind')} from {os.fspath(path)}")
                yield path.name, document
