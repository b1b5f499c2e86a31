"""LLM access through LangChain chat models, with tolerant JSON extraction."""

import json
from typing import Any, Dict, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_groq import ChatGroq
from langchain_openai import ChatOpenAI
from loguru import logger

from mrpilot.config import Settings

DEFAULT_TEMPERATURE = 0.2

JSON_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}"),
        ("human", "{payload}"),
    ]
)


def create_chat_model(settings: Settings, model: Optional[str] = None, temperature: float = DEFAULT_TEMPERATURE) -> BaseChatModel:
    """Build the chat model for the configured provider."""
    model_name = model or settings.llm_model
    if settings.llm_provider == "groq":
        return ChatGroq(groq_api_key=settings.require("groq_api_key"), model=model_name, temperature=temperature)
    return ChatOpenAI(api_key=settings.require("openai_api_key"), model=model_name, temperature=temperature)


def coerce_json_object(text: str) -> Dict[str, Any]:
    """Parse model output into a JSON object.

    Tries the text as-is first, then the span between the first ``{`` and the
    last ``}``, which strips code fences and chatter around the payload.

    Raises:
        ValueError: when the text is empty or holds no JSON object.
    """
    raw = (text or "").strip()
    if not raw:
        raise ValueError("LLM returned an empty response")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("LLM response does not contain a JSON object")
        try:
            parsed = json.loads(raw[start : end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"LLM response is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("LLM response JSON is not an object")
    return parsed


async def complete_json(llm: BaseChatModel, system_prompt: str, payload: Any) -> Dict[str, Any]:
    """Send ``payload`` (serialized as JSON) under ``system_prompt`` and return the JSON object reply."""
    chain = JSON_PROMPT | llm | StrOutputParser()
    logger.debug(f"Calling LLM with {len(system_prompt)} chars of instructions")
    text = await chain.ainvoke(
        {
            "system_prompt": system_prompt,
            "payload": json.dumps(payload, ensure_ascii=False),
        }
    )
    return coerce_json_object(text)
