"""
Cloud-init template rendering.

A single template is shared by every node of a run. Placeholders use the
``${name}`` form and are replaced literally; there is no expression syntax.
The rendered document must parse as a YAML mapping before it can be uploaded.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from pvecluster.errors import TemplateReadError, TemplateRenderError, UnresolvedPlaceholderError
from pvecluster.models import CloudInitDocument

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\$\{[^}\s]*\}")

Substitutions = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _as_pairs(substitutions: Substitutions) -> Tuple[Tuple[str, str], ...]:
    items = substitutions.items() if isinstance(substitutions, Mapping) else substitutions
    # repeated keys keep their first position and their last value
    merged = {str(key): str(value) for key, value in items}
    return tuple(merged.items())


def find_placeholders(content: str) -> List[str]:
    """Return every ``${...}`` token left in *content*, in order of appearance."""
    return PLACEHOLDER_RE.findall(content)


class CloudInitTemplate:
    """A cloud-init template read once and rendered per node."""

    def __init__(self, source: bytes, path: Optional[Path] = None):
        self.source = source
        self.path = path

    @classmethod
    def load(cls, template_path: Union[str, Path]) -> "CloudInitTemplate":
        """Read the template bytes.

        Raises:
            TemplateReadError: If the file is missing, unreadable or not UTF-8
        """
        path = Path(template_path)
        try:
            source = path.read_bytes()
            source.decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateReadError(f"error reading cloud-init template {path}: {e}")
        logger.debug(f"Loaded cloud-init template {path} ({len(source)} bytes)")
        return cls(source, path)

    def render(
        self, substitutions: Substitutions, strict: bool = True, node_name: Optional[str] = None
    ) -> CloudInitDocument:
        """Substitute placeholders and validate the result.

        Every occurrence of ``${key}`` is replaced, entries are applied in
        order and a later entry wins over an earlier one for the same token.

        Args:
            substitutions: Placeholder name to replacement value
            strict: Reject documents that still contain ``${...}`` tokens
            node_name: Node the document is rendered for, used in errors

        Returns:
            Validated CloudInitDocument

        Raises:
            TemplateRenderError: If the result is not a YAML mapping
            UnresolvedPlaceholderError: If strict and tokens remain
        """
        pairs = _as_pairs(substitutions)
        content = self.source.decode("utf-8")
        for key, value in pairs:
            content = content.replace("${" + key + "}", value)

        try:
            parsed = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise TemplateRenderError(f"invalid cloud-init yaml after replacements: {e}", node_name=node_name)
        if parsed is not None and not isinstance(parsed, dict):
            raise TemplateRenderError(
                f"cloud-init document must be a mapping, got {type(parsed).__name__}", node_name=node_name
            )

        leftover = find_placeholders(content)
        if leftover:
            if strict:
                raise UnresolvedPlaceholderError(leftover, node_name=node_name)
            logger.warning(f"⚠️  Unresolved placeholders kept in cloud-init for {node_name}: {sorted(set(leftover))}")

        return CloudInitDocument(
            template_source=self.source,
            substitutions=pairs,
            rendered_content=content,
            validated=True,
        )


def render(template_path: Union[str, Path], substitutions: Substitutions, strict: bool = True) -> CloudInitDocument:
    """Read *template_path* and render it with *substitutions*."""
    return CloudInitTemplate.load(template_path).render(substitutions, strict=strict)
