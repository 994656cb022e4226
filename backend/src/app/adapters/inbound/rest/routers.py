"""Health, AI features, Admin — REST routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import Response

from app.application.dtos import (
    ConfigResponse,
    CredentialHealthResponse,
    CredentialTestRequest,
    CredentialTestResponse,
    CredentialTestSummaryResponse,
    EvaluateTranslationRequest,
    GenerateRequest,
    GenerateResponse,
    GrammarExercisesRequest,
    GrammarExercisesResponse,
    HealthResponse,
    HintsRequest,
    PracticeSentenceRequest,
    PronunciationAnalysis,
    PronunciationRequest,
    RoleplayReport,
    RoleplayReportRequest,
    RoleplayRespondRequest,
    SentenceHints,
    TextResponse,
    TranslateRequest,
    TranslationEvaluation,
    UpdateSettingRequest,
    UpgradeRequest,
    UpgradeResult,
    UsageResponse,
)
from app.application.features import LearningFeatureService
from app.application.services import AIGatewayService
from app.dependencies import (
    get_cache,
    get_cached_settings,
    get_feature_service,
    get_gateway_service,
    get_session_factory,
)
from app.domain.entities import GenerationRequest
from app.ports.outbound import CachePort


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    cache: CachePort = Depends(get_cache),
) -> ORJSONResponse:
    settings = get_cached_settings()
    services: dict[str, str] = {}

    # ── Check Database ───────────────────────────────────────
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        services["database"] = "connected"
    except Exception as e:
        services["database"] = "disconnected"
        services["database_error"] = str(e)

    # ── Check Redis ──────────────────────────────────────────
    try:
        services["cache"] = "connected" if await cache.health_check() else "disconnected"
    except Exception as e:
        services["cache"] = "disconnected"
        services["cache_error"] = str(e)

    # Credentials and settings live in the database; the cache is optional
    overall = "ok" if services["database"] == "connected" else "degraded"
    body = HealthResponse(
        status=overall,
        environment=settings.app_env.value,
        services=services,
    )
    return ORJSONResponse(
        content=body.model_dump(),
        status_code=200 if overall == "ok" else 503,
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  AI — generic generation
# ═══════════════════════════════════════════════════════════════
ai_router = APIRouter(prefix="/ai", tags=["AI"])


@ai_router.post("/generate", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    service: AIGatewayService = Depends(get_gateway_service),
) -> GenerateResponse:
    result = await service.dispatch(
        GenerationRequest(
            prompt=body.prompt,
            context=body.context,
            feature=body.feature,
            attachment=body.attachment.to_domain() if body.attachment else None,
            user_id=body.user_id,
            model=body.model,
        )
    )
    return GenerateResponse(
        text=result.text,
        credential=result.credential.name,
        attempts=result.attempts,
        latency_ms=round(result.latency_ms, 1),
    )


# ═══════════════════════════════════════════════════════════════
#  AI — learning features
# ═══════════════════════════════════════════════════════════════
@ai_router.post("/translate", response_model=TextResponse)
async def translate(
    body: TranslateRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> TextResponse:
    return TextResponse(text=await features.translate(body.sentence, body.user_id))


@ai_router.post("/hints", response_model=SentenceHints)
async def sentence_hints(
    body: HintsRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> SentenceHints:
    return await features.sentence_hints(body.sentence, body.difficulty, body.user_id)


@ai_router.post("/upgrade", response_model=UpgradeResult)
async def upgrade_sentence(
    body: UpgradeRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> UpgradeResult:
    return await features.upgrade_sentence(
        body.sentence,
        body.grammar_level.value,
        body.vocabulary_level.value,
        body.user_id,
    )


@ai_router.post("/grammar-exercises", response_model=GrammarExercisesResponse)
async def grammar_exercises(
    body: GrammarExercisesRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> GrammarExercisesResponse:
    exercises = await features.grammar_exercises(body.tense, body.count, body.user_id)
    return GrammarExercisesResponse(exercises=exercises)


@ai_router.post("/evaluate-translation", response_model=TranslationEvaluation)
async def evaluate_translation(
    body: EvaluateTranslationRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> TranslationEvaluation:
    return await features.evaluate_translation(
        body.vietnamese, body.english, body.grammar_difficulty, body.user_id
    )


@ai_router.post("/pronunciation", response_model=PronunciationAnalysis)
async def analyze_pronunciation(
    body: PronunciationRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> PronunciationAnalysis:
    return await features.analyze_pronunciation(
        body.target_sentence,
        transcript=body.transcript,
        audio=body.audio.to_domain() if body.audio else None,
        user_id=body.user_id,
    )


@ai_router.post("/roleplay/respond", response_model=TextResponse)
async def roleplay_respond(
    body: RoleplayRespondRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> TextResponse:
    reply = await features.roleplay_response(
        body.scenario,
        body.role,
        body.history,
        body.message,
        audio=body.audio.to_domain() if body.audio else None,
        user_id=body.user_id,
    )
    return TextResponse(text=reply)


@ai_router.post("/roleplay/report", response_model=RoleplayReport)
async def roleplay_report(
    body: RoleplayReportRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> RoleplayReport:
    return await features.roleplay_report(body.scenario, body.role, body.history, body.user_id)


@ai_router.post("/practice-sentence", response_model=TextResponse)
async def practice_sentence(
    body: PracticeSentenceRequest,
    features: LearningFeatureService = Depends(get_feature_service),
) -> TextResponse:
    return TextResponse(text=await features.practice_sentence(body.level.value, body.user_id))


# ═══════════════════════════════════════════════════════════════
#  Administration
# ═══════════════════════════════════════════════════════════════
admin_router = APIRouter(prefix="/admin", tags=["Administration"])


@admin_router.get("/credentials/stats", response_model=list[CredentialHealthResponse])
async def credential_stats(
    service: AIGatewayService = Depends(get_gateway_service),
) -> list[CredentialHealthResponse]:
    """Runtime counters and cooldowns for every stored credential."""
    healths = await service.get_credential_stats()
    return [CredentialHealthResponse.model_validate(h) for h in healths]


@admin_router.post("/credentials/test", response_model=CredentialTestResponse)
async def test_credential(
    body: CredentialTestRequest,
    service: AIGatewayService = Depends(get_gateway_service),
) -> CredentialTestResponse:
    result = await service.test_credential(body.key, body.model, body.provider)
    return CredentialTestResponse.model_validate(result)


@admin_router.post("/credentials/test-all", response_model=CredentialTestSummaryResponse)
async def test_all_credentials(
    service: AIGatewayService = Depends(get_gateway_service),
) -> CredentialTestSummaryResponse:
    """Test every stored credential; passes are activated, failures deactivated."""
    summary = await service.test_all_credentials()
    return CredentialTestSummaryResponse.model_validate(summary)


@admin_router.post("/credentials/reset")
async def reset_credentials(
    service: AIGatewayService = Depends(get_gateway_service),
) -> dict[str, str]:
    """Clear runtime counters and cooldowns for all credentials."""
    service.dispatcher.pool.reset()
    return {"status": "reset"}


@admin_router.get("/config", response_model=ConfigResponse)
async def get_config(
    service: AIGatewayService = Depends(get_gateway_service),
) -> ORJSONResponse:
    config = await service.get_config()
    return ORJSONResponse(
        content=ConfigResponse(**config).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@admin_router.put("/config")
async def update_config(
    body: UpdateSettingRequest,
    service: AIGatewayService = Depends(get_gateway_service),
) -> dict[str, str]:
    await service.update_setting(body.key, body.value)
    return {"status": "updated", "key": body.key}


@admin_router.get("/usage", response_model=list[UsageResponse])
async def usage(
    service: AIGatewayService = Depends(get_gateway_service),
) -> list[UsageResponse]:
    """Current-month usage per user."""
    records = await service.get_user_stats()
    return [UsageResponse.model_validate(r) for r in records]
