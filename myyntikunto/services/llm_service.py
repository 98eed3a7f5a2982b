import asyncio
import json
import time
import os
import logging
from typing import TypeVar, Type
from pydantic import BaseModel
from openai import OpenAI
from dotenv import load_dotenv

from myyntikunto.models.report import LLMCallLog

load_dotenv()
logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

RESEARCH_FALLBACK_PROMPT = (
    "Olet suomalaisten pk-yritysten arvonmäärityksen asiantuntija. Vastaa tietojesi pohjalta "
    "ja kerro selvästi, milloin kyse on arviosta."
)


class LLMService:
    def __init__(self):
        self.client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self.model = os.getenv("OPENAI_MODEL", "gpt-4o")
        self.search_model = os.getenv("OPENAI_SEARCH_MODEL", "gpt-4o")
        self.call_logs: list[LLMCallLog] = []

    def _record_call(
        self,
        step_name: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        response: str,
        tokens: int | None,
        duration_ms: float,
    ) -> None:
        logger.info(
            f"LLM call [{step_name}]: model={model}, tokens={tokens}, duration={duration_ms:.0f}ms"
        )
        logger.info(f"LLM [{step_name}] response: {response[:500]}...")
        self.call_logs.append(LLMCallLog(
            step_name=step_name,
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response=response,
            tokens_used=tokens,
            duration_ms=duration_ms,
        ))

    async def research_completion(self, prompt: str, step_name: str) -> str:
        """Web-search backed research (Responses API); falls back to a plain completion."""
        return await asyncio.to_thread(self._research_completion_sync, prompt, step_name)

    def _research_completion_sync(self, prompt: str, step_name: str) -> str:
        start = time.time()
        try:
            response = self.client.responses.create(
                model=self.search_model,
                tools=[{"type": "web_search_preview"}],
                input=prompt,
            )
        except Exception as e:
            duration_ms = (time.time() - start) * 1000
            logger.warning(
                f"Research API call failed [{step_name}] after {duration_ms:.0f}ms: {e}. "
                f"Falling back to standard completion."
            )
            return self._text_completion_sync(
                system_prompt=RESEARCH_FALLBACK_PROMPT,
                user_prompt=prompt,
                step_name=f"{step_name}_fallback",
            )

        duration_ms = (time.time() - start) * 1000
        text_parts, citations = _collect_output(response)
        content = "\n".join(text_parts) if text_parts else str(response.output)
        if citations:
            content += "\n\n--- Sources ---\n"
            content += "".join(f"- {c['title']}: {c['url']}\n" for c in citations)

        tokens = getattr(response.usage, "total_tokens", None) if response.usage else None
        self._record_call(
            step_name, self.search_model, "[web_search_preview tool]", prompt, content, tokens, duration_ms,
        )
        return content

    async def structured_completion(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: Type[T],
        step_name: str,
        max_retries: int = 2,
    ) -> T:
        """Call OpenAI with JSON mode and parse response into a Pydantic model."""
        return await asyncio.to_thread(
            self._structured_completion_sync,
            system_prompt, user_prompt, response_model, step_name, max_retries,
        )

    def _structured_completion_sync(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: Type[T],
        step_name: str,
        max_retries: int,
    ) -> T:
        schema = response_model.model_json_schema()
        full_system = (
            f"{system_prompt}\n\n"
            f"Respond with valid JSON matching this schema:\n{json.dumps(schema, indent=2)}"
        )

        last_error = None
        for attempt in range(max_retries + 1):
            start = time.time()
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    temperature=0.0,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": full_system},
                        {"role": "user", "content": user_prompt},
                    ],
                )
                content = response.choices[0].message.content
                tokens = response.usage.total_tokens if response.usage else None
                self._record_call(
                    step_name, self.model, full_system, user_prompt, content, tokens,
                    (time.time() - start) * 1000,
                )
                return response_model.model_validate_json(content)
            except Exception as e:
                last_error = e
                logger.warning(f"LLM call attempt {attempt + 1} failed for [{step_name}]: {e}")

        raise RuntimeError(f"LLM call failed after {max_retries + 1} attempts: {last_error}")

    async def text_completion(self, system_prompt: str, user_prompt: str, step_name: str) -> str:
        """Free-text completion, used for the Finnish valuation narrative."""
        return await asyncio.to_thread(self._text_completion_sync, system_prompt, user_prompt, step_name)

    def _text_completion_sync(self, system_prompt: str, user_prompt: str, step_name: str) -> str:
        start = time.time()
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=0.2,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        content = response.choices[0].message.content
        tokens = response.usage.total_tokens if response.usage else None
        self._record_call(
            step_name, self.model, system_prompt, user_prompt, content, tokens,
            (time.time() - start) * 1000,
        )
        return content


def _collect_output(response) -> tuple[list[str], list[dict]]:
    """Pull output text and url citations out of a Responses API result."""
    text_parts: list[str] = []
    citations: list[dict] = []
    for item in response.output:
        if getattr(item, "type", None) != "message":
            continue
        for block in getattr(item, "content", []):
            if getattr(block, "type", None) != "output_text":
                continue
            text_parts.append(block.text)
            for ann in getattr(block, "annotations", []):
                if getattr(ann, "type", None) == "url_citation":
                    citations.append({"title": getattr(ann, "title", ""), "url": getattr(ann, "url", "")})
    return text_parts, citations
