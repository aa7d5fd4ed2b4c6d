"""Persona text and per-feature prompt templates.

Every discriminator a client can send is an enum member here, and every
enum member has exactly one template.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Sequence


class Personality(str, Enum):
    FORMAL = "formal"
    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    TEACHER = "teacher"
    DC_MODE = "dc-mode"


class ResponseMode(str, Enum):
    CHAT = "chat"
    VOICE = "voice"


class DocumentAction(str, Enum):
    SUMMARIZE = "summarize"
    EXPLAIN = "explain"
    TRANSLATE = "translate"
    EXTRACT_NOTES = "extract-notes"
    HIGHLIGHT = "highlight"


class CodeAction(str, Enum):
    GENERATE = "generate"
    DEBUG = "debug"
    OPTIMIZE = "optimize"
    EXPLAIN = "explain"


class StudyAction(str, Enum):
    NCERT_SOLUTION = "ncert-solution"
    MCQ_GENERATE = "mcq-generate"
    LONG_ANSWER = "long-answer"
    MATH_SOLVE = "math-solve"
    EXPLAIN_DIAGRAM = "explain-diagram"


class LanguageCode(str, Enum):
    EN = "en"
    HI = "hi"
    TA = "ta"
    TE = "te"
    BN = "bn"


class SearchType(str, Enum):
    GENERAL = "general"
    NEWS = "news"
    ACADEMIC = "academic"


class ImageAction(str, Enum):
    OCR = "ocr"
    DETECT_OBJECTS = "detect-objects"
    ANALYZE_SCENE = "analyze-scene"
    EXTRACT_TEXT = "extract-text"


class CreativeType(str, Enum):
    SCRIPT = "script"
    STORY = "story"
    POEM = "poem"
    VIDEO_IDEA = "video-idea"


class CreativeLanguage(str, Enum):
    EN = "en"
    HI = "hi"


SWADESH_SYSTEM_PROMPT = """You are Swadesh AI - an intelligent, respectful, and culturally-aware Indian AI assistant.

IMPORTANT IDENTITY RULES:
- You are Swadesh AI, created by Zaid Asim
- You are built in India, for the world
- NEVER mention Gemini, Google, or any underlying AI models
- Always maintain your identity as Swadesh AI
- Be respectful, formal, and dignified, especially when speaking with government officials

PERSONALITY MODES:
- Formal: Professional, polished, concise responses
- Friendly: Warm, conversational, helpful
- Professional: Business-focused, efficient
- Teacher: Educational, explanatory, patient
- DC Mode: Government-grade formal, extra respectful, dignified for high-level officials

Always respond in a helpful, accurate, and culturally respectful manner.
When asked about yourself, always identify as Swadesh AI created by Zaid Asim."""

RESPONSE_LENGTH_INSTRUCTIONS: Dict[ResponseMode, str] = {
    ResponseMode.VOICE: (
        "IMPORTANT: Keep your responses SHORT and CLEAR. Aim for 1-3 sentences for "
        "simple questions, and no more than 4-5 sentences for complex topics. Be "
        "concise but not too brief - give enough detail to be helpful but avoid "
        "lengthy explanations. Speak naturally as if having a conversation."
    ),
    ResponseMode.CHAT: (
        "Keep your responses focused and well-structured. Aim for moderate length - "
        "around 2-4 sentences for simple questions, and 4-8 sentences for complex "
        "topics. Use bullet points or numbered lists when helpful. Be informative "
        "but avoid unnecessary verbosity."
    ),
}

PERSONALITY_PROMPTS: Dict[Personality, str] = {
    Personality.FORMAL: "Respond in a formal, professional manner.",
    Personality.FRIENDLY: "Respond in a warm, friendly, and conversational tone.",
    Personality.PROFESSIONAL: "Respond in a business-focused, efficient manner.",
    Personality.TEACHER: "Respond like a patient teacher, explaining concepts clearly.",
    Personality.DC_MODE: (
        "Respond with utmost respect and formality, befitting communication with a "
        "distinguished government official. Use honorifics and formal language."
    ),
}

LANGUAGE_NAMES: Dict[LanguageCode, str] = {
    LanguageCode.EN: "English",
    LanguageCode.HI: "Hindi",
    LanguageCode.TA: "Tamil",
    LanguageCode.TE: "Telugu",
    LanguageCode.BN: "Bengali",
}

FEATURE_ROLES = {
    "document": "You are a document analysis expert. Provide clear, accurate, and helpful analysis.",
    "code": (
        "You are an expert programmer. Provide clean, well-commented, production-ready "
        "code when generating. Be thorough when debugging or explaining."
    ),
    "study": (
        "You are an expert Indian education tutor familiar with NCERT curriculum. "
        "Provide accurate, student-friendly explanations."
    ),
    "language": (
        "You are a professional translator specializing in Indian languages. Provide "
        "accurate, natural-sounding translations."
    ),
    "search": "You are a search and research assistant. Provide accurate, well-organized information.",
    "creative": "You are a creative writer and content creator. Generate engaging, original content.",
}

FALLBACK_RESPONSES = {
    "chat": "I apologize, but I couldn't generate a response. Please try again.",
    "document": "Unable to analyze the document.",
    "code": "Unable to process the code.",
    "study": "Unable to provide study assistance.",
    "language": "Unable to translate.",
    "search": "Unable to find relevant information.",
    "image": "Unable to analyze the image.",
    "creative": "Unable to generate creative content.",
}

SEARCH_TYPE_CONTEXT: Dict[SearchType, str] = {
    SearchType.GENERAL: "Provide a comprehensive answer",
    SearchType.NEWS: "Focus on recent news and current events",
    SearchType.ACADEMIC: "Provide an academic, research-focused response with citations",
}

SEARCH_SOURCES = (
    {
        "title": "Swadesh AI Knowledge Base",
        "url": "https://swadesh.ai",
        "snippet": "Powered by Swadesh AI - Built in India",
    },
    {
        "title": "Indian Government Portal",
        "url": "https://india.gov.in",
        "snippet": "Official portal of the Government of India",
    },
    {
        "title": "NCERT Online",
        "url": "https://ncert.nic.in",
        "snippet": "National Council of Educational Research and Training",
    },
)

IMAGE_PROMPTS: Dict[ImageAction, str] = {
    ImageAction.OCR: "Extract all text from this image. Provide the text exactly as it appears.",
    ImageAction.DETECT_OBJECTS: (
        "Identify and list all objects visible in this image with their approximate locations."
    ),
    ImageAction.ANALYZE_SCENE: (
        "Describe this image in detail, including the scene, setting, colors, and any "
        "notable elements."
    ),
    ImageAction.EXTRACT_TEXT: (
        "Extract and organize any text, numbers, or symbols from this image in a "
        "structured format."
    ),
}


def feature_system_prompt(feature: str) -> str:
    return f"{SWADESH_SYSTEM_PROMPT}\n\n{FEATURE_ROLES[feature]}"


def chat_system_prompt(personality: Personality, mode: ResponseMode) -> str:
    return (
        f"{SWADESH_SYSTEM_PROMPT}\n\n{RESPONSE_LENGTH_INSTRUCTIONS[mode]}\n\n"
        f"Current personality: {PERSONALITY_PROMPTS[personality]}"
    )


def format_memory_context(contents: Sequence[str]) -> str:
    if not contents:
        return ""
    lines = "\n".join(f"- {content}" for content in contents)
    return f"User's memories for context:\n{lines}"


def chat_message(message: str, context: Optional[str] = None) -> str:
    if context:
        return f"Context: {context}\n\nUser: {message}"
    return message


def language_name(code: LanguageCode) -> str:
    return LANGUAGE_NAMES[code]


def document_prompt(
    action: DocumentAction,
    content: str,
    target_language: LanguageCode = LanguageCode.HI,
) -> str:
    templates = {
        DocumentAction.SUMMARIZE: "Summarize the following document concisely, highlighting key points:",
        DocumentAction.EXPLAIN: (
            "Provide a detailed explanation of the following document, breaking down "
            "complex concepts:"
        ),
        DocumentAction.TRANSLATE: f"Translate the following text to {language_name(target_language)}:",
        DocumentAction.EXTRACT_NOTES: (
            "Extract the key notes and important points from the following document in "
            "a structured format:"
        ),
        DocumentAction.HIGHLIGHT: (
            "Identify and highlight the most important sentences and concepts in the "
            "following document:"
        ),
    }
    return f"{templates[action]}\n\n{content}"


def code_prompt(
    action: CodeAction,
    language: str,
    code: Optional[str] = None,
    prompt: Optional[str] = None,
) -> str:
    if action is CodeAction.GENERATE:
        return f"Generate {language} code for the following requirement:\n\n{prompt}"
    templates = {
        CodeAction.DEBUG: f"Debug the following {language} code and explain the issues found:",
        CodeAction.OPTIMIZE: (
            f"Optimize the following {language} code for better performance and readability:"
        ),
        CodeAction.EXPLAIN: (
            f"Explain the following {language} code in detail, including what each part does:"
        ),
    }
    return f"{templates[action]}\n\n{code}"


def study_prompt(
    action: StudyAction,
    topic: str,
    grade: Optional[str] = None,
    subject: Optional[str] = None,
) -> str:
    context = f"For Class {grade} {subject}: " if grade and subject else ""
    templates = {
        StudyAction.NCERT_SOLUTION: (
            f"{context}Provide a detailed NCERT-style solution for: {topic}. "
            "Include step-by-step explanation."
        ),
        StudyAction.MCQ_GENERATE: (
            f"{context}Generate 5 multiple choice questions (MCQs) with answers and "
            f"explanations on the topic: {topic}"
        ),
        StudyAction.LONG_ANSWER: (
            f"{context}Write a comprehensive long answer for: {topic}. Include "
            "introduction, main points, and conclusion."
        ),
        StudyAction.MATH_SOLVE: (
            f"Solve the following math problem step by step, showing all work: {topic}"
        ),
        StudyAction.EXPLAIN_DIAGRAM: (
            f"Provide a detailed textual explanation of the following diagram or concept: "
            f"{topic}. Describe all components and their relationships."
        ),
    }
    return templates[action]


def translation_prompt(
    text: str,
    source: LanguageCode,
    target: LanguageCode,
    transliterate: bool = False,
) -> str:
    instruction = f"Translate the following {language_name(source)} text to {language_name(target)}"
    if transliterate:
        instruction += ", and also provide Roman transliteration"
    return f"{instruction}:\n\n{text}"


def search_prompt(query: str, search_type: SearchType) -> str:
    return f"{SEARCH_TYPE_CONTEXT[search_type]} for the following query: {query}"


def creative_prompt(
    content_type: CreativeType,
    prompt: str,
    language: CreativeLanguage = CreativeLanguage.EN,
) -> str:
    poem_language = "Hindi" if language is CreativeLanguage.HI else "English"
    templates = {
        CreativeType.SCRIPT: (
            f"Write a detailed video/drama script for: {prompt}. Include scene "
            "descriptions, dialogues, and directions."
        ),
        CreativeType.STORY: (
            f"Write a creative short story based on: {prompt}. Include interesting "
            "characters, plot twists, and a satisfying ending."
        ),
        CreativeType.POEM: (
            f"Write a beautiful {poem_language} poem about: {prompt}. Use appropriate "
            "rhyme scheme and poetic devices."
        ),
        CreativeType.VIDEO_IDEA: (
            f"Generate 5 creative video ideas for: {prompt}. Include title, concept, "
            "and brief outline for each."
        ),
    }
    return templates[content_type]
