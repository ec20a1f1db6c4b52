from .database import SQLiteMemoryDB
from .episode_store import EpisodeNotFound, EpisodeStore, StoreError, symptom_code
from .live_query import LiveQueryHub, Subscription
from .service import ConsultationService, EpisodeClosed, TurnResult

__all__ = [
    "SQLiteMemoryDB",
    "ConsultationService",
    "EpisodeClosed",
    "EpisodeNotFound",
    "EpisodeStore",
    "LiveQueryHub",
    "StoreError",
    "Subscription",
    "TurnResult",
    "symptom_code",
]
