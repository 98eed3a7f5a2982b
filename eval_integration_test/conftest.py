import pytest
from myyntikunto.services.llm_service import LLMService


@pytest.fixture
def llm_service():
    """Provide a real LLMService instance backed by the live OpenAI API."""
    return LLMService()
