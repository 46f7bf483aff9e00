"""Stage catalog and per-persona template selection."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import CatalogError
from ..models.journey import StageCatalogDocument, StageTemplate


logger = logging.getLogger(__name__)


class StageCatalog:
    """
    Immutable catalog of stage templates keyed by persona.

    Loaded once at startup and injected wherever templates are needed.
    Selection is deterministic: the same persona always yields the same
    ordered list.
    """

    def __init__(
        self,
        document: StageCatalogDocument,
        default_persona: str = "rookie-cut",
        min_stages: int = 3,
        max_stages: int = 5,
    ):
        if default_persona not in document.personas:
            raise CatalogError(
                f"Default persona '{default_persona}' is not in the catalog",
                details={"personas": sorted(document.personas)},
            )
        if min_stages < 1 or max_stages < min_stages:
            raise CatalogError(
                "Invalid stage count bounds",
                details={"min_stages": min_stages, "max_stages": max_stages},
            )
        self.document = document
        self.default_persona = default_persona
        self.min_stages = min_stages
        self.max_stages = max_stages

    @classmethod
    def load(cls, path: str | Path, **kwargs) -> "StageCatalog":
        """
        Load and validate the catalog resource.

        Args:
            path: Path to the catalog JSON file
            **kwargs: Passed through to the constructor

        Raises:
            CatalogError: If the file is missing or does not validate
        """
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            document = StageCatalogDocument.model_validate(raw)
        except FileNotFoundError as e:
            raise CatalogError("Stage catalog not found", path=str(path)) from e
        except (ValueError, PydanticValidationError) as e:
            raise CatalogError(
                "Stage catalog is invalid",
                path=str(path),
                details={"reason": str(e)[:500]},
            ) from e

        catalog = cls(document, **kwargs)
        logger.info(
            f"Loaded stage catalog v{document.version} "
            f"with {len(document.personas)} personas from {path}"
        )
        return catalog

    @property
    def version(self) -> str:
        return self.document.version

    @property
    def personas(self) -> List[str]:
        return sorted(self.document.personas)

    def resolve_persona(self, persona: Optional[str]) -> str:
        """Return the persona key to use, falling back to the default."""
        if persona and persona in self.document.personas:
            return persona
        if persona:
            logger.warning(
                f"Unknown persona '{persona}', falling back to '{self.default_persona}'"
            )
        return self.default_persona

    def select_templates(self, persona: Optional[str]) -> List[StageTemplate]:
        """
        Pick the ordered stage templates for a persona.

        Fewer templates than the minimum are returned as-is (no padding);
        more than the maximum are cut to the first ``max_stages`` by
        ``order_index``.
        """
        key = self.resolve_persona(persona)
        templates = sorted(self.document.personas[key], key=lambda t: t.order_index)
        if len(templates) > self.max_stages:
            return templates[: self.max_stages]
        if len(templates) < self.min_stages:
            logger.info(
                f"Persona '{key}' has {len(templates)} stages, below the minimum of {self.min_stages}"
            )
        return templates
