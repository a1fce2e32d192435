import logging
from dataclasses import dataclass

import firebase_admin
from firebase_admin import credentials, firestore
from mistralai import Mistral

from intervuo.config.settings import Settings
from intervuo.core.engine import AnalysisEngine
from intervuo.core.use_case import InterviewUseCase
from intervuo.core.voice_agent import VoiceAgentClient
from intervuo.storages.interview_storage import (
    FirestoreInterviewStorage,
    InterviewStorage,
    MemoryInterviewStorage,
)
from intervuo.system.auth import FirebaseTokenVerifier, TokenVerifier

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "intervuo"


@dataclass
class AppContext:
    """Everything the request handlers share, built once at startup."""

    settings: Settings
    verifier: TokenVerifier
    storage: InterviewStorage
    use_case: InterviewUseCase
    firebase_app: firebase_admin.App | None = None

    @classmethod
    def build(cls, settings: Settings) -> "AppContext":
        firebase_app = _init_firebase(settings)

        if settings.STORAGE_BACKEND == "firestore":
            storage: InterviewStorage = FirestoreInterviewStorage(firestore.client(app=firebase_app))
        else:
            storage = MemoryInterviewStorage()

        if not settings.ULTRAVOX_API_KEY:
            logger.warning("ULTRAVOX_API_KEY not set. Interview creation will not work.")
        if not settings.MISTRAL_API_KEY:
            logger.warning("MISTRAL_API_KEY not set. Transcript analysis will not work.")

        voice_agent = VoiceAgentClient(
            api_key=settings.ULTRAVOX_API_KEY,
            api_url=settings.ULTRAVOX_API_URL,
            model=settings.ULTRAVOX_MODEL,
            temperature=settings.ULTRAVOX_TEMPERATURE,
            language_hint=settings.ULTRAVOX_LANGUAGE_HINT,
            join_timeout=settings.ULTRAVOX_JOIN_TIMEOUT,
            max_duration=settings.ULTRAVOX_MAX_DURATION,
            request_timeout=settings.ULTRAVOX_REQUEST_TIMEOUT_SECONDS,
        )
        engine = AnalysisEngine(
            client=_init_mistral(settings),
            model=settings.MISTRAL_MODEL,
            temperature=settings.ANALYSIS_TEMPERATURE,
            max_tokens=settings.ANALYSIS_MAX_TOKENS,
            log_dir=settings.LOG_DIR,
        )

        return cls(
            settings=settings,
            verifier=FirebaseTokenVerifier(firebase_app),
            storage=storage,
            use_case=InterviewUseCase(voice_agent, engine, storage),
            firebase_app=firebase_app,
        )

    def close(self) -> None:
        if self.firebase_app is not None:
            firebase_admin.delete_app(self.firebase_app)
            self.firebase_app = None


def _init_firebase(settings: Settings) -> firebase_admin.App:
    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    if settings.FIREBASE_CREDENTIALS:
        credential = credentials.Certificate(settings.FIREBASE_CREDENTIALS)
    else:
        credential = credentials.ApplicationDefault()
    return firebase_admin.initialize_app(credential, options, name=FIREBASE_APP_NAME)


def _init_mistral(settings: Settings) -> Mistral | None:
    if not settings.MISTRAL_API_KEY:
        return None
    return Mistral(
        api_key=settings.MISTRAL_API_KEY,
        timeout_ms=int(settings.ANALYSIS_TIMEOUT_SECONDS * 1000),
    )
