from __future__ import annotations
from fastapi import FastAPI, Header, HTTPException, Depends, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import StreamingResponse, JSONResponse
from starlette.middleware.sessions import SessionMiddleware
from typing import Optional
import io, csv, json, logging, secrets
from sqlalchemy.orm import Session

from . import config
from .auth import router as auth_router, require_session
from .db import init_db, get_session, Base
from . import models_db  # registers table models
from .models_api import ProfileCreateRequest, TestSubmitRequest, PostCreateRequest, CommentCreateRequest
from .questionnaire import seed_catalog
from .scoring import AnswerValidationError, check_answer_keys, compute_score, per_test_statistics
from .session import SessionState
from . import crud

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

if config.SESSION_SECRET == "dev-session-secret":
    logger.warning("SESSION_SECRET is not set; using an insecure development secret")

app = FastAPI(title="Mind Connect API", version="1.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    session_cookie="mindconnect_session",
    max_age=config.SESSION_TTL_SECONDS,
    same_site="lax",
    https_only=config.SESSION_HTTPS_ONLY,
)
app.include_router(auth_router)


def check_auth(authorization: Optional[str]) -> None:
    if not config.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Admin API disabled")
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    token = authorization.replace("Bearer ", "", 1).strip()
    if not secrets.compare_digest(token, config.ADMIN_API_KEY):
        raise HTTPException(status_code=403, detail="Invalid token")


def _validation_response(errors: list) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation failed", "errors": errors},
    )


@app.exception_handler(RequestValidationError)
async def on_request_validation_error(request: Request, exc: RequestValidationError):
    errors = []
    for e in exc.errors():
        # dict key errors carry a trailing "[key]" marker after the key itself
        loc = [str(p) for p in e.get("loc", ()) if p != "[key]"]
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        errors.append({"field": ".".join(loc), "message": e.get("msg", "invalid")})
    return _validation_response(errors)


@app.exception_handler(AnswerValidationError)
async def on_answer_validation_error(request: Request, exc: AnswerValidationError):
    return _validation_response(exc.errors)


@app.exception_handler(Exception)
async def on_unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


@app.on_event("startup")
def on_startup():
    engine = init_db()
    Base.metadata.create_all(bind=engine)


def _iso(dt):
    return dt.isoformat() if dt else None


def _profile_out(p: models_db.Profile) -> dict:
    return {
        "id": p.id,
        "userId": p.user_id,
        "name": p.name,
        "relation": p.relation,
        "birthDate": _iso(p.birth_date),
        "gender": p.gender,
        "createdAt": _iso(p.created_at),
    }


def _test_out(t: models_db.Test) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "category": t.category,
        "questionCount": t.question_count,
        "estimatedTime": t.estimated_time,
        "coverImage": t.cover_image,
        "isPublic": t.is_public,
    }


def _question_out(q: models_db.Question) -> dict:
    return {
        "id": q.id,
        "testId": q.test_id,
        "text": q.text,
        "type": q.type,
        "order": q.position,
        "options": q.options or [],
    }


def _result_out(r: models_db.TestResult, with_relations: bool = True) -> dict:
    out = {
        "id": r.id,
        "userId": r.user_id,
        "profileId": r.profile_id,
        "testId": r.test_id,
        "answers": r.answers,
        "score": r.score,
        "summary": r.summary,
        "conductedAt": _iso(r.conducted_at),
    }
    if with_relations:
        out["test"] = _test_out(r.test) if r.test else None
        out["profile"] = _profile_out(r.profile) if r.profile else None
    return out


def _author(user: Optional[models_db.User]) -> dict:
    return {"firstName": user.first_name if user else None}


def _post_out(p: models_db.Post, with_author: bool = True) -> dict:
    out = {
        "id": p.id,
        "userId": p.user_id,
        "title": p.title,
        "content": p.content,
        "category": p.category,
        "views": p.views,
        "createdAt": _iso(p.created_at),
    }
    if with_author:
        out["user"] = _author(p.user)
    return out


def _comment_out(c: models_db.Comment, with_author: bool = True) -> dict:
    out = {
        "id": c.id,
        "postId": c.post_id,
        "userId": c.user_id,
        "content": c.content,
        "createdAt": _iso(c.created_at),
    }
    if with_author:
        out["user"] = _author(c.user)
    return out


@app.get("/api/health")
def health():
    return {"status": "ok"}

# --- Profiles ---

@app.get("/api/profiles")
def list_profiles(session: SessionState = Depends(require_session), db: Session = Depends(get_session)):
    return [_profile_out(p) for p in crud.list_profiles(db, session.user_id)]

@app.post("/api/profiles", status_code=201)
def create_profile(
    req: ProfileCreateRequest,
    session: SessionState = Depends(require_session),
    db: Session = Depends(get_session),
):
    obj = crud.create_profile(
        db,
        user_id=session.user_id,
        name=req.name,
        relation=req.relation,
        birth_date=req.birth_date,
        gender=req.gender,
    )
    return _profile_out(obj)

@app.delete("/api/profiles/{profile_id}", status_code=204)
def delete_profile(
    profile_id: int,
    session: SessionState = Depends(require_session),
    db: Session = Depends(get_session),
):
    obj = crud.get_profile(db, profile_id)
    # Someone else's profile looks the same as a missing one.
    if not obj or obj.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Profile not found")
    if crud.profile_has_results(db, obj.id):
        raise HTTPException(status_code=409, detail="Profile has results")
    crud.delete_profile(db, obj)
    return Response(status_code=204)

# --- Tests ---

@app.get("/api/tests")
def list_tests(db: Session = Depends(get_session)):
    return [_test_out(t) for t in crud.list_tests(db)]

@app.get("/api/tests/{test_id}")
def get_test(test_id: int, db: Session = Depends(get_session)):
    test = crud.get_test(db, test_id)
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    out = _test_out(test)
    out["questions"] = [_question_out(q) for q in crud.get_questions(db, test_id)]
    return out

@app.post("/api/tests/{test_id}/submit", status_code=201)
def submit_test(
    test_id: int,
    req: TestSubmitRequest,
    session: SessionState = Depends(require_session),
    db: Session = Depends(get_session),
):
    test = crud.get_test(db, test_id)
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    profile = crud.get_profile(db, req.profile_id)
    if not profile or profile.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Profile not found")

    check_answer_keys(req.answers, [q.id for q in crud.get_questions(db, test_id)])
    score = compute_score(req.answers)

    obj = crud.create_test_result(
        db=db,
        user_id=session.user_id,
        profile_id=profile.id,
        test_id=test.id,
        answers=req.answers,
        score=score,
        summary=req.summary,
    )
    logger.info("Result %s: user=%s test=%s total=%s", obj.id, session.user_id, test.id, score["total"])
    return _result_out(obj, with_relations=False)

# --- Results ---

@app.get("/api/results")
def list_results(session: SessionState = Depends(require_session), db: Session = Depends(get_session)):
    return [_result_out(r) for r in crud.list_test_results(db, session.user_id)]

@app.get("/api/results/{result_id}")
def get_result(
    result_id: int,
    session: SessionState = Depends(require_session),
    db: Session = Depends(get_session),
):
    obj = crud.get_test_result(db, result_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Result not found")
    if obj.user_id != session.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return _result_out(obj)

# --- Community ---

@app.get("/api/posts")
def list_posts(db: Session = Depends(get_session)):
    return [_post_out(p) for p in crud.list_posts(db)]

@app.post("/api/posts", status_code=201)
def create_post(
    req: PostCreateRequest,
    session: SessionState = Depends(require_session),
    db: Session = Depends(get_session),
):
    obj = crud.create_post(db, user_id=session.user_id, title=req.title, content=req.content, category=req.category)
    return _post_out(obj, with_author=False)

@app.get("/api/posts/{post_id}")
def get_post(post_id: int, db: Session = Depends(get_session)):
    post = crud.get_post(db, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    out = _post_out(post)
    out["comments"] = [_comment_out(c) for c in crud.list_comments(db, post_id)]
    return out

@app.post("/api/posts/{post_id}/comments", status_code=201)
def create_comment(
    post_id: int,
    req: CommentCreateRequest,
    session: SessionState = Depends(require_session),
    db: Session = Depends(get_session),
):
    if not crud.get_post(db, post_id):
        raise HTTPException(status_code=404, detail="Post not found")
    obj = crud.create_comment(db, post_id=post_id, user_id=session.user_id, content=req.content)
    return _comment_out(obj, with_author=False)

# --- Admin (API key) ---

@app.post("/api/seed")
def seed(db: Session = Depends(get_session), authorization: Optional[str] = Header(default=None)):
    check_auth(authorization)
    added = seed_catalog(db)
    return {"message": "Seeded" if added else "Already seeded"}

@app.get("/api/admin/results")
def admin_results(
    limit: int = 50000,
    db: Session = Depends(get_session),
    authorization: Optional[str] = Header(default=None),
):
    check_auth(authorization)
    out = []
    for r in crud.list_all_test_results(db, limit=limit):
        rec = _result_out(r)
        rec["user"] = {"firstName": r.user.first_name, "email": r.user.email} if r.user else None
        out.append(rec)
    return out

@app.get("/api/admin/stats")
def admin_stats(
    k_min: int = 5,
    limit: int = 50000,
    db: Session = Depends(get_session),
    authorization: Optional[str] = Header(default=None),
):
    check_auth(authorization)
    rows = per_test_statistics(crud.list_all_test_results(db, limit=limit), k_min=k_min)
    return {"k_min": max(1, int(k_min)), "count_groups": len(rows), "rows": rows}

@app.get("/api/admin/results/export")
def admin_export(
    format: str = "csv",
    limit: int = 50000,
    db: Session = Depends(get_session),
    authorization: Optional[str] = Header(default=None),
):
    check_auth(authorization)
    rows = crud.list_all_test_results(db, limit=limit)

    if format.lower() == "json":
        out = [_result_out(r) for r in rows]
        return JSONResponse({"count": len(out), "records": out})

    def stream():
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["result_id","conducted_at","user_id","profile_id","relation","test_id","test_title","score_total","answered","answers","summary"])
        yield buffer.getvalue()
        buffer.seek(0); buffer.truncate(0)
        for r in rows:
            score = r.score or {}
            writer.writerow([
                r.id,
                _iso(r.conducted_at) or "",
                r.user_id,
                r.profile_id,
                r.profile.relation if r.profile else "",
                r.test_id,
                r.test.title if r.test else "",
                score.get("total",""),
                score.get("answered",""),
                json.dumps(r.answers or {}, ensure_ascii=False),
                r.summary or "",
            ])
            yield buffer.getvalue()
            buffer.seek(0); buffer.truncate(0)

    return StreamingResponse(stream(), media_type="text/csv", headers={"Content-Disposition":"attachment; filename=test_results.csv"})
