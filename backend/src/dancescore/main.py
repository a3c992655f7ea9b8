from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from .config import Settings, load_env_file
from .controller import ScoringController
from .domain import (
    CompetitionOverview,
    DraftResponse,
    EditCellRequest,
    EditCellResponse,
    LeaderboardResponse,
    LockRequest,
    SubmitRequest,
    SubmitResponse,
    normalize_email,
)
from .errors import (
    EditNotAllowed,
    IncompleteSubmission,
    InvalidTransition,
    PersistenceFailure,
    StaleReferenceError,
    SubmissionInProgress,
)
from .lockstate import Actor
from .roles import resolve_role
from .snapshot import ScoreStore, connect_feed
from .store import DocumentStore, build_store

logger = logging.getLogger(__name__)


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except StaleReferenceError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except EditNotAllowed as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except IncompleteSubmission as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "missing": [{"id": p.id, "number": p.number, "name": p.name} for p in exc.missing],
            },
        )
    except (InvalidTransition, SubmissionInProgress) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PersistenceFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc))


def create_app(store: DocumentStore | None = None, settings: Settings | None = None) -> FastAPI:
    load_env_file()
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = store or build_store(settings)
    scores = ScoreStore()
    sessions: dict[str, ScoringController] = {}

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        scores.replace_all(store.list_score_cells())
        unsubscribe = connect_feed(store.subscribe, scores, asyncio.get_running_loop())
        logger.info("Score feed connected (%d cells)", len(scores.snapshot))
        try:
            yield
        finally:
            unsubscribe()
            for controller in sessions.values():
                controller.close()
            sessions.clear()

    app = FastAPI(title="Dance Competition Scoring", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def session(email: str | None) -> ScoringController:
        if not email or not email.strip():
            raise HTTPException(status_code=401, detail="X-Actor-Email is required")
        email = normalize_email(email)
        role = resolve_role(
            email,
            root_admin_emails=settings.root_admin_emails,
            admin_emails=store.list_admin_emails(),
            judge_emails=[j.email for j in store.list_judges()],
            spectator_email=settings.spectator_email,
        )
        controller = sessions.get(email)
        if controller is None or controller.actor.role is not role:
            if controller is not None:
                controller.close()
            controller = ScoringController(
                store,
                scores,
                Actor(email=email, role=role),
                submit_timeout=settings.submit_timeout_seconds,
            )
            sessions[email] = controller
            logger.info("Actor role resolved: %s -> %s", email, role.value)
        controller.load()
        return controller

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/api/categories/{category_id}/leaderboard", response_model=LeaderboardResponse)
    async def leaderboard(
        category_id: str,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            competition, _category = controller.find_category(category_id)
            rows = controller.leaderboard(category_id)
            scope = controller.scope_for(competition)
        return LeaderboardResponse(category_id=category_id, scope=scope.value, rows=rows)

    @app.get("/api/categories/{category_id}/draft", response_model=DraftResponse)
    async def get_draft(
        category_id: str,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            controller.select_category(category_id)
            return _draft_response(controller, category_id)

    @app.put("/api/categories/{category_id}/draft", response_model=EditCellResponse)
    async def edit_draft(
        category_id: str,
        req: EditCellRequest,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            controller.select_category(category_id)
            text = controller.edit_cell(req.participant_id, req.item_id, req.text)
            accepted = text is not None
            if accepted and req.commit:
                text = controller.commit_cell(req.participant_id, req.item_id)
        if text is None:
            current = controller.draft.get(req.participant_id, {}).get(req.item_id, "")
            text = current if isinstance(current, str) else f"{current:.1f}"
        return EditCellResponse(
            participant_id=req.participant_id, item_id=req.item_id, text=text, accepted=accepted
        )

    @app.post("/api/categories/{category_id}/submit", response_model=SubmitResponse)
    async def submit(
        category_id: str,
        req: SubmitRequest,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            controller.select_category(category_id)
            batch = await controller.submit(allow_incomplete=req.allow_incomplete)
        return SubmitResponse(
            category_id=batch.category_id, judge_email=batch.judge.email, cell_count=len(batch.cells)
        )

    @app.post("/api/categories/{category_id}/reopen")
    async def reopen(
        category_id: str,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            judge = controller.reopen(category_id)
        return {"ok": True, "submitted": judge.is_submitted(category_id)}

    @app.post("/api/competitions/{competition_id}/lock")
    async def lock_competition(
        competition_id: str,
        req: LockRequest,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            competition = controller.lock_competition(competition_id, req.locked)
        return competition

    @app.post("/api/categories/{category_id}/lock")
    async def lock_category(
        category_id: str,
        req: LockRequest,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        with _http_errors():
            competition = controller.lock_category(category_id, req.locked)
        return competition

    @app.get("/api/competitions/{competition_id}/progress", response_model=CompetitionOverview)
    async def progress(
        competition_id: str,
        x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    ):
        controller = session(x_actor_email)
        if not controller.actor.role.is_admin:
            raise HTTPException(status_code=403, detail="progress is only available to admins")
        with _http_errors():
            return controller.progress(competition_id)

    return app


def _draft_response(controller: ScoringController, category_id: str) -> DraftResponse:
    _competition, category = controller.find_category(category_id)
    return DraftResponse(
        category_id=category_id,
        judge_email=controller.actor.email,
        state=controller.submission_state(category_id).value,
        editable=controller.is_editable(category_id),
        items=category.active_items(),
        draft=controller.draft,
        totals=controller.totals(),
    )


app = create_app()
handler = Mangum(app)
