from __future__ import annotations
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session, selectinload
from .models_db import User, Profile, Test, Question, TestResult, Post, Comment

# --- Users ---

def upsert_user(db: Session, claims: Dict[str, Any]) -> User:
    user = db.get(User, claims["sub"])
    if user is None:
        user = User(id=claims["sub"])
        db.add(user)
    user.email = claims.get("email")
    user.first_name = claims.get("first_name")
    user.last_name = claims.get("last_name")
    user.profile_image_url = claims.get("profile_image_url")
    db.commit()
    db.refresh(user)
    return user

def get_user(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)

# --- Profiles ---

def list_profiles(db: Session, user_id: str) -> List[Profile]:
    return (
        db.query(Profile)
        .filter(Profile.user_id == user_id)
        .order_by(Profile.id.asc())
        .all()
    )

def create_profile(db: Session, user_id: str, name: str, relation: str, birth_date=None, gender: str | None = None) -> Profile:
    obj = Profile(user_id=user_id, name=name, relation=relation, birth_date=birth_date, gender=gender)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def get_profile(db: Session, profile_id: int) -> Profile | None:
    return db.get(Profile, profile_id)

def profile_has_results(db: Session, profile_id: int) -> bool:
    return db.query(TestResult.id).filter(TestResult.profile_id == profile_id).first() is not None

def delete_profile(db: Session, profile: Profile) -> None:
    db.delete(profile)
    db.commit()

# --- Tests ---

def list_tests(db: Session) -> List[Test]:
    return db.query(Test).order_by(Test.id.asc()).all()

def get_test(db: Session, test_id: int) -> Test | None:
    return db.get(Test, test_id)

def get_questions(db: Session, test_id: int) -> List[Question]:
    return (
        db.query(Question)
        .filter(Question.test_id == test_id)
        .order_by(Question.position.asc(), Question.id.asc())
        .all()
    )

def count_tests(db: Session) -> int:
    return db.query(Test).count()

def create_test(db: Session, questions: List[dict], **fields) -> Test:
    test = Test(question_count=len(questions), **fields)
    db.add(test)
    db.flush()
    for i, q in enumerate(questions, start=1):
        db.add(Question(
            test_id=test.id,
            text=q["text"],
            type=q.get("type", "likert"),
            position=q.get("order", i),
            options=q.get("options") or [],
        ))
    db.commit()
    db.refresh(test)
    return test

# --- Results ---

def create_test_result(db: Session, user_id: str, profile_id: int, test_id: int, answers: dict, score: dict, summary: str | None) -> TestResult:
    obj = TestResult(
        user_id=user_id,
        profile_id=profile_id,
        test_id=test_id,
        # JSON object keys are strings either way; store them that way up front.
        answers={str(k): v for k, v in (answers or {}).items()},
        score=score or {},
        summary=summary,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def list_test_results(db: Session, user_id: str) -> List[TestResult]:
    return (
        db.query(TestResult)
        .options(selectinload(TestResult.test), selectinload(TestResult.profile))
        .filter(TestResult.user_id == user_id)
        .order_by(TestResult.conducted_at.desc(), TestResult.id.desc())
        .all()
    )

def get_test_result(db: Session, result_id: int) -> TestResult | None:
    return db.get(TestResult, result_id)

def list_all_test_results(db: Session, limit: int = 50000) -> List[TestResult]:
    return (
        db.query(TestResult)
        .options(
            selectinload(TestResult.test),
            selectinload(TestResult.profile),
            selectinload(TestResult.user),
        )
        .order_by(TestResult.conducted_at.desc(), TestResult.id.desc())
        .limit(limit)
        .all()
    )

# --- Community ---

def list_posts(db: Session) -> List[Post]:
    return (
        db.query(Post)
        .options(selectinload(Post.user))
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )

def create_post(db: Session, user_id: str, title: str, content: str, category: str) -> Post:
    obj = Post(user_id=user_id, title=title, content=content, category=category)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def get_post(db: Session, post_id: int) -> Optional[Post]:
    return db.get(Post, post_id)

def list_comments(db: Session, post_id: int) -> List[Comment]:
    return (
        db.query(Comment)
        .options(selectinload(Comment.user))
        .filter(Comment.post_id == post_id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .all()
    )

def create_comment(db: Session, post_id: int, user_id: str, content: str) -> Comment:
    obj = Comment(post_id=post_id, user_id=user_id, content=content)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
