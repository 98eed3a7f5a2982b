from functools import lru_cache
from myyntikunto.services.llm_service import LLMService
from myyntikunto.services.db_service import DBService
from myyntikunto.services.pipeline_status import StatusRegistry
from myyntikunto.pipeline.orchestrator import ValuationPipeline


@lru_cache
def get_llm_service() -> LLMService:
    return LLMService()


@lru_cache
def get_db_service() -> DBService:
    return DBService()


@lru_cache
def get_status_registry() -> StatusRegistry:
    return StatusRegistry()


def get_pipeline() -> ValuationPipeline:
    return ValuationPipeline(
        llm=get_llm_service(),
        db=get_db_service(),
    )
