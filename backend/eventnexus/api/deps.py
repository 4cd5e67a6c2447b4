from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy.engine import Engine

from eventnexus.hub.plugin_registry import PluginRegistry
from eventnexus.jobs.ingest_events import build_ingestion_service
from eventnexus.infra.db.users_repository import UsersRepository
from eventnexus.jobs.refresh_recommendations import build_recommendation_engine
from eventnexus.services.ingestion import EventIngestionService
from eventnexus.services.preferences import UserPreferencesService
from eventnexus.services.recommendations import RecommendationEngine


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "db_engine", None)
    if engine is None:
        raise HTTPException(status_code=500, detail="Database engine not configured")
    return engine


def get_registry(request: Request) -> PluginRegistry:
    registry = getattr(request.app.state, "plugin_registry", None)
    if registry is None:
        raise HTTPException(status_code=500, detail="Plugin registry not configured")
    return registry


def get_ingestion_service(
    engine: Engine = Depends(get_engine),
    registry: PluginRegistry = Depends(get_registry),
) -> EventIngestionService:
    return build_ingestion_service(engine, registry)


def get_recommendation_engine(engine: Engine = Depends(get_engine)) -> RecommendationEngine:
    return build_recommendation_engine(engine)


def get_preferences_service(engine: Engine = Depends(get_engine)) -> UserPreferencesService:
    return UserPreferencesService(UsersRepository(engine))

