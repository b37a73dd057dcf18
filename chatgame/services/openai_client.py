import openai

from chatgame.core.config import settings


def create_client(api_key: str) -> openai.AsyncOpenAI:
    """
    Builds a provider client billed against the given credential.
    Clients are created per call; no credential outlives the request that supplied it.
    """
    return openai.AsyncOpenAI(api_key=api_key, base_url=settings.OPENAI_BASE_URL)
