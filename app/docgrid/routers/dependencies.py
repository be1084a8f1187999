"""
Shared FastAPI dependencies.

The upstream gateway authenticates the user and resolves project
permissions; it forwards the result in the ``X-Actor-Id`` and
``X-Can-Edit`` headers.
"""

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.ai import AIService, get_ai_service
from ..services.chain import StrategyChainFactory
from ..services.fetcher import BinaryFetcher, get_fetcher
from ..services.pdf_service import PDFService, get_pdf_service
from ..services.pipeline import ExtractionPipeline
from ..services.store import ExtractionStore


def get_actor(x_actor_id: str | None = Header(default=None)) -> str | None:
    """Id of the requesting user, if the gateway supplied one."""
    return x_actor_id


def get_can_edit(x_can_edit: bool = Header(default=True)) -> bool:
    """Precomputed edit permission of the actor on the target's project."""
    return x_can_edit


def get_store(db: Session = Depends(get_db)) -> ExtractionStore:
    return ExtractionStore(db)


def get_pipeline(
    store: ExtractionStore = Depends(get_store),
    ai_service: AIService = Depends(get_ai_service),
    fetcher: BinaryFetcher = Depends(get_fetcher),
    pdf_service: PDFService = Depends(get_pdf_service),
) -> ExtractionPipeline:
    """Pipeline bound to the request's session."""
    return ExtractionPipeline(
        store=store,
        chain_factory=StrategyChainFactory(ai_service, fetcher, pdf_service),
    )
