"""Gemini-backed planning and extraction collaborator.

One object serves both collaborator roles:
- propose(objective): raw planning output for the Planner Brain
- extract(url, text, targets): ExtractionRecords for the navigation engine

The google-generativeai SDK is synchronous, so calls run in a worker
thread. Transient API failures are retried with exponential backoff;
responses that are not JSON raise CollaboratorError, which the Planner
Brain turns into a fallback plan and the navigation engine into a failed
visit.
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from capy_web.config.logging import get_logger
from capy_web.config.settings import settings
from capy_web.exceptions import CollaboratorError
from capy_web.llm.prompts import EXTRACTION_PROMPT, MAX_EXTRACTION_CHARS, PLANNING_PROMPT
from capy_web.schemas.claim_schema import ExtractionRecord
from capy_web.schemas.research_schema import ResearchObjective

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_json_response(text: str) -> Any:
    """
    Parse a model response as JSON, tolerating markdown code fences.

    Raises:
        CollaboratorError: If the response is not valid JSON
    """
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise CollaboratorError(f"Collaborator returned invalid JSON: {e}") from e


class GeminiResearchCollaborator:
    """
    Planning and extraction collaborator backed by Google Gemini.

    Attributes:
        model: Configured Gemini generative model
        max_attempts: Attempts per call before giving up
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        model: Any = None,
        max_attempts: int = 3,
    ):
        """
        Args:
            api_key: Gemini API key (defaults to settings)
            model_name: Model name (defaults to settings)
            model: Pre-built model object exposing generate_content(prompt, ...)
            max_attempts: Retry budget for transient failures

        Raises:
            ValueError: If no model is given and no API key is configured
        """
        self.logger = get_logger("GeminiCollaborator")
        self.max_attempts = max_attempts

        if model is not None:
            self.model = model
            return

        api_key = api_key or settings.gemini_api_key
        if not api_key:
            raise ValueError("GEMINI_API_KEY not configured in environment")

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name or settings.gemini_model)
        self.logger.info("Gemini collaborator initialized", model=model_name or settings.gemini_model)

    async def _generate(self, prompt: str, temperature: float) -> str:
        """Generate text with retry on transient errors."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_not_exception_type(CollaboratorError),
            reraise=True,
        ):
            with attempt:
                response = await asyncio.to_thread(
                    self.model.generate_content,
                    prompt,
                    generation_config={"temperature": temperature},
                )
                text = getattr(response, "text", None)
                if not text:
                    raise CollaboratorError("Collaborator returned an empty response")
                return text
        raise CollaboratorError("Collaborator retry loop exited without a response")

    async def propose(self, objective: ResearchObjective) -> Dict[str, Any]:
        """
        Ask the model for questions and target domains.

        Returns:
            Raw planning dict (validated downstream as a PlanProposal)

        Raises:
            CollaboratorError: Unusable response
        """
        prompt = PLANNING_PROMPT.format(
            query=objective.query,
            context=objective.context or "none",
            known_domains=", ".join(objective.known_domains) or "none",
        )
        text = await self._generate(prompt, temperature=0.3)
        data = parse_json_response(text)
        if not isinstance(data, dict):
            raise CollaboratorError("Planning response is not a JSON object")

        self.logger.debug("Planning proposal received", keys=sorted(data.keys()))
        return data

    async def extract(self, url: str, text: str, extraction_targets: List[str]) -> List[ExtractionRecord]:
        """
        Extract structured records from page text.

        Records that fail validation are dropped and counted in the log.

        Raises:
            CollaboratorError: Unusable response
        """
        prompt = EXTRACTION_PROMPT.format(
            url=url,
            targets=", ".join(extraction_targets) or "any factual details",
            text=text[:MAX_EXTRACTION_CHARS],
        )
        data = parse_json_response(await self._generate(prompt, temperature=0.0))

        raw_records = data.get("records", []) if isinstance(data, dict) else data
        if not isinstance(raw_records, list):
            raise CollaboratorError("Extraction response has no record list")

        records: List[ExtractionRecord] = []
        rejected = 0
        for raw in raw_records:
            try:
                records.append(ExtractionRecord.model_validate(raw))
            except ValidationError:
                rejected += 1

        if rejected:
            self.logger.warning("Extraction records rejected", url=url, rejected=rejected, kept=len(records))
        return records
