from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from .gemini import TextGenerator
from .prompts import (
    FALLBACK_RESPONSES,
    IMAGE_PROMPTS,
    SEARCH_SOURCES,
    CodeAction,
    CreativeLanguage,
    CreativeType,
    DocumentAction,
    ImageAction,
    LanguageCode,
    Personality,
    ResponseMode,
    SearchType,
    StudyAction,
    chat_message,
    chat_system_prompt,
    code_prompt,
    creative_prompt,
    document_prompt,
    feature_system_prompt,
    format_memory_context,
    search_prompt,
    study_prompt,
    translation_prompt,
)

LOGGER = logging.getLogger("swadesh.assistant")


class SearchSource(BaseModel):
    title: str
    url: str
    snippet: str


class SearchResult(BaseModel):
    summary: str
    sources: List[SearchSource]


async def _generate(
    generator: TextGenerator,
    feature: str,
    prompt: str,
    system_instruction: Optional[str] = None,
    image_base64: Optional[str] = None,
) -> str:
    text = await generator.generate(
        prompt,
        system_instruction=system_instruction,
        image_base64=image_base64,
    )
    if not text or not text.strip():
        LOGGER.info("Empty %s generation, using fallback text", feature)
        return FALLBACK_RESPONSES[feature]
    return text


def build_chat_context(
    memory_contents: Sequence[str], context: Optional[str] = None
) -> Optional[str]:
    """Join the user's saved memories and the caller-supplied context.

    Returns None when neither contributes anything.
    """
    parts = [format_memory_context(memory_contents), context or ""]
    joined = "\n\n".join(part for part in parts if part)
    return joined or None


async def chat(
    generator: TextGenerator,
    message: str,
    personality: Personality = Personality.FRIENDLY,
    context: Optional[str] = None,
    mode: ResponseMode = ResponseMode.CHAT,
) -> str:
    return await _generate(
        generator,
        "chat",
        chat_message(message, context),
        system_instruction=chat_system_prompt(personality, mode),
    )


async def analyze_document(
    generator: TextGenerator,
    content: str,
    action: DocumentAction,
    target_language: Optional[LanguageCode] = None,
) -> str:
    prompt = document_prompt(action, content, target_language or LanguageCode.HI)
    return await _generate(
        generator, "document", prompt, system_instruction=feature_system_prompt("document")
    )


async def analyze_code(
    generator: TextGenerator,
    action: CodeAction,
    code: Optional[str] = None,
    language: str = "javascript",
    prompt: Optional[str] = None,
) -> str:
    return await _generate(
        generator,
        "code",
        code_prompt(action, language, code=code, prompt=prompt),
        system_instruction=feature_system_prompt("code"),
    )


async def study_assistant(
    generator: TextGenerator,
    topic: str,
    action: StudyAction,
    grade: Optional[str] = None,
    subject: Optional[str] = None,
) -> str:
    return await _generate(
        generator,
        "study",
        study_prompt(action, topic, grade=grade, subject=subject),
        system_instruction=feature_system_prompt("study"),
    )


async def translate_text(
    generator: TextGenerator,
    text: str,
    source_language: LanguageCode,
    target_language: LanguageCode,
    transliterate: bool = False,
) -> str:
    return await _generate(
        generator,
        "language",
        translation_prompt(text, source_language, target_language, transliterate),
        system_instruction=feature_system_prompt("language"),
    )


async def search_and_summarize(
    generator: TextGenerator,
    query: str,
    search_type: SearchType = SearchType.GENERAL,
) -> SearchResult:
    summary = await _generate(
        generator,
        "search",
        search_prompt(query, search_type),
        system_instruction=feature_system_prompt("search"),
    )
    return SearchResult(
        summary=summary,
        sources=[SearchSource(**source) for source in SEARCH_SOURCES],
    )


async def analyze_image(
    generator: TextGenerator,
    image_base64: str,
    action: ImageAction,
) -> str:
    # Vision requests go out without the persona instruction.
    return await _generate(
        generator, "image", IMAGE_PROMPTS[action], image_base64=image_base64
    )


async def generate_creative_content(
    generator: TextGenerator,
    content_type: CreativeType,
    prompt: str,
    language: CreativeLanguage = CreativeLanguage.EN,
) -> str:
    return await _generate(
        generator,
        "creative",
        creative_prompt(content_type, prompt, language),
        system_instruction=feature_system_prompt("creative"),
    )


FAILURE_MESSAGES: Dict[str, str] = {
    "chat": "Failed to generate response",
    "document": "Failed to analyze document",
    "code": "Failed to process code",
    "study": "Failed to provide study assistance",
    "language": "Failed to translate",
    "search": "Failed to search",
    "image": "Failed to analyze image",
    "creative": "Failed to generate content",
}
