"""Audience persona generation for keyword clusters."""

import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

from keyword_mapping.models.keyword import UserPersona
from keyword_mapping.modules.clustering.clusterer import ALLOWED_MODELS, DEFAULT_MODEL

if TYPE_CHECKING:
    from keyword_mapping.repository import ResearchRepository

logger = logging.getLogger(__name__)


class PersonaBook:
    """Personas keyed by cluster name.

    Persisted as a list; held as a name -> persona map so that saving a
    persona for an existing cluster updates it in place.
    """

    def __init__(self, personas: Iterable[UserPersona] = ()):
        self._by_name: dict[str, UserPersona] = {}
        for persona in personas:
            # First entry wins if a stored list already holds duplicates.
            self._by_name.setdefault(persona.name, persona)

    def upsert(self, name: str, description: str, keywords: Iterable[str]) -> UserPersona:
        """Replace the description of an existing persona, or add a new one."""
        existing = self._by_name.get(name)
        if existing is not None:
            existing.description = description
            return existing
        persona = UserPersona(name=name, description=description, keywords=list(keywords))
        self._by_name[name] = persona
        return persona

    def get(self, name: str) -> Optional[UserPersona]:
        return self._by_name.get(name)

    def to_list(self) -> list[UserPersona]:
        return list(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name


class PersonaGenerator:
    """Describe the searcher behind a cluster and store it on the record.

    Usage::

        generator = PersonaGenerator(llm_client, repository)
        await generator.save_persona(research_id, "Matcha drinks")
    """

    def __init__(
        self,
        llm_client=None,
        repository: Optional["ResearchRepository"] = None,
        model: Optional[str] = None,
    ):
        if llm_client is None:
            from keyword_mapping.integrations.llm_client import LLMClient
            llm_client = LLMClient()
        if repository is None:
            from keyword_mapping.repository import ResearchRepository
            repository = ResearchRepository()
        self._llm = llm_client
        self._repo = repository
        self._model = model

    # ------------------------------------------------------------------
    # describe_persona
    # ------------------------------------------------------------------

    async def describe_persona(
        self, cluster_name: str, keywords: list[str], model: Optional[str] = None
    ) -> dict[str, str]:
        """Return ``{"description": text}`` for one cluster.

        Raises:
            ValueError: No keywords, an unsupported model, or an empty
                        response from the model.
        """
        keywords = [k.strip() for k in keywords if k and k.strip()]
        if not keywords:
            raise ValueError("At least one keyword is required to describe a persona.")
        model = model or self._model or DEFAULT_MODEL
        if model not in ALLOWED_MODELS:
            raise ValueError(f"Unsupported persona model: {model!r}")

        prompt = (
            "You are a market analyst and user researcher. Based on the single "
            "keyword cluster below, describe the people most likely behind these "
            "searches.\n\n"
            "Cluster topic: " + cluster_name + "\n"
            "Keywords: " + ", ".join(keywords) + "\n\n"
            "Write a concise persona of about 100-150 words covering:\n"
            "1. Primary intent: what they are trying to achieve.\n"
            "2. Knowledge level: how familiar they are with the topic.\n"
            "3. Needs and pain points related to the topic.\n"
            "4. Likely background (occupation, interests or role), justified by "
            "the keywords.\n\n"
            "Return only the description as plain text, with no heading, prefix "
            "or markdown."
        )
        text = await self._llm.generate_text(
            prompt,
            system_prompt="You are an expert in search intent and audience research.",
            use_cache=False,
            model=model,
        )
        description = (text or "").strip()
        if not description:
            raise ValueError(f"The model returned an empty persona for {cluster_name!r}.")
        return {"description": description}

    # ------------------------------------------------------------------
    # save_persona
    # ------------------------------------------------------------------

    async def save_persona(
        self,
        research_id: str,
        cluster_name: str,
        keywords: Optional[list[str]] = None,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        """Generate a persona for *cluster_name* and upsert it by name.

        ``keywords`` defaults to the cluster's members on the record.
        """
        if not research_id or not cluster_name:
            return {"success": False, "error": "Research id and cluster name are required."}
        try:
            record = self._repo.get(research_id)
            if record is None:
                return {"success": False, "error": "Research item not found."}

            if keywords is None:
                keywords = record.cluster_map().get(cluster_name)
                if keywords is None:
                    return {"success": False, "error": f"Cluster not found: {cluster_name}"}

            result = await self.describe_persona(cluster_name, keywords, model=model)

            # Re-read so personas saved meanwhile for other clusters survive.
            record = self._repo.get(research_id)
            if record is None:
                return {"success": False, "error": "Research item not found."}
            book = PersonaBook(record.persona_items())
            book.upsert(cluster_name, result["description"], keywords)

            if not self._repo.update_personas(research_id, book.to_list()):
                return {"success": False, "error": "Failed to save persona."}
            logger.info("Saved persona %r for research %s", cluster_name, research_id)
            return {"success": True, "error": None}
        except Exception as exc:
            logger.error("Persona generation failed for %r: %s", cluster_name, exc)
            return {"success": False, "error": str(exc)}

    async def generate_all(
        self, research_id: str, model: Optional[str] = None
    ) -> dict[str, Any]:
        """Generate personas for every cluster, one at a time.

        A failing cluster is reported in ``failed`` and does not stop the
        remaining ones.
        """
        record = self._repo.get(research_id)
        if record is None:
            return {"success": False, "generated": [], "failed": {}, "error": "Research item not found."}

        generated: list[str] = []
        failed: dict[str, str] = {}
        for cluster_name, members in record.cluster_map().items():
            result = await self.save_persona(research_id, cluster_name, members, model=model)
            if result["success"]:
                generated.append(cluster_name)
            else:
                failed[cluster_name] = result["error"]
                logger.warning("Persona for %r failed: %s", cluster_name, result["error"])

        return {
            "success": not failed,
            "generated": generated,
            "failed": failed,
            "error": None if not failed else f"{len(failed)} persona(s) failed.",
        }
