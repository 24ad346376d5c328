import logging

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from backend.src.core.config import Settings

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


def get_llm_model(settings: Settings, max_tokens: int | None = None, temperature: float = 0.7, streaming: bool = False):
    """
    Universal chat-model factory.
    Google Gemini by default; anything else goes through the OpenAI-compatible
    client (OpenAI, Groq, Ollama, ...) with the right base URL.
    """
    llm_provider = settings.LLM_PROVIDER.lower()
    llm_model_name = settings.LLM_MODEL_NAME
    llm_base_url = settings.LLM_BASE_URL
    llm_api_key = settings.LLM_API_KEY

    # --- Set Base URL for known providers ---
    if llm_provider == "groq" and not llm_base_url:
        llm_base_url = GROQ_BASE_URL
        llm_api_key = llm_api_key or settings.GROQ_API_KEY

    logger.debug("Loading AI model: %s -> %s", llm_provider, llm_model_name)

    # --- BLOCK 1: GOOGLE GEMINI ---
    if llm_provider == "google":
        google_api_key = llm_api_key or settings.GOOGLE_API_KEY
        if not google_api_key:
            raise ValueError("Google API key not found.")
        return ChatGoogleGenerativeAI(
            model=llm_model_name,
            google_api_key=google_api_key,
            temperature=temperature,
            max_output_tokens=max_tokens,
            max_retries=0,
        )

    # --- BLOCK 2: UNIVERSAL OPENAI-COMPATIBLE ---
    if not llm_api_key and llm_provider == "openai":
        llm_api_key = settings.OPENAI_API_KEY
    if not llm_api_key and "localhost" not in (llm_base_url or ""):
        logger.warning("No API key provided for LLM provider '%s'", llm_provider)

    return ChatOpenAI(
        model=llm_model_name,
        api_key=llm_api_key or "dummy-key",
        base_url=llm_base_url,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
        streaming=streaming,
    )
