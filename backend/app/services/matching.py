"""
Deterministic job/user match score used for job detail and recommendations.

Weights: role category 20, speciality 30, sub-speciality 25, experience band 25.
"""
from typing import Any

from ..models.job import Job
from ..models.user import User

ROLE_WEIGHT = 20
SPECIALITY_WEIGHT = 30
SUB_SPECIALITY_WEIGHT = 25
EXPERIENCE_WEIGHT = 25

# Job-seeker role -> job role category it is eligible for.
USER_ROLE_TO_JOB_ROLE = {
    "DOCTOR": "Doctor",
    "NURSE": "Other",
    "STUDENT": "Student",
}

# experience_level -> inclusive (min, max) years; None = open ended.
EXPERIENCE_BANDS = {
    "fresher": (0, 1),
    "intermediate": (2, 4),
    "experienced": (5, None),
}


def _norm(s: str | None) -> str:
    return (s or "").strip().lower()


def user_specialities(user: User) -> set[str]:
    names = {_norm(s.name) for s in (user.specialities or [])}
    if user.speciality:
        names.add(_norm(user.speciality))
    names.discard("")
    return names


def experience_fits(level: str | None, years: int | None) -> bool:
    band = EXPERIENCE_BANDS.get(_norm(level))
    if band is None or years is None:
        return False
    low, high = band
    return years >= low and (high is None or years <= high)


def match_breakdown(*, job: Job, user: User) -> dict[str, Any]:
    role_match = USER_ROLE_TO_JOB_ROLE.get((user.role or "").upper()) == job.role
    speciality_match = bool(job.speciality) and _norm(job.speciality) in user_specialities(user)
    sub_speciality_match = bool(job.sub_speciality) and _norm(job.sub_speciality) == _norm(user.sub_speciality)
    exp_match = experience_fits(job.experience_level, user.experience_years)

    score = 0
    score += ROLE_WEIGHT if role_match else 0
    score += SPECIALITY_WEIGHT if speciality_match else 0
    score += SUB_SPECIALITY_WEIGHT if sub_speciality_match else 0
    score += EXPERIENCE_WEIGHT if exp_match else 0
    return {
        "score": score,
        "role": role_match,
        "speciality": speciality_match,
        "sub_speciality": sub_speciality_match,
        "experience": exp_match,
    }


def match_score(*, job: Job, user: User) -> int:
    return int(match_breakdown(job=job, user=user)["score"])


def rank_jobs(*, jobs: list[Job], user: User) -> list[tuple[Job, int]]:
    """Jobs with a positive score, best first; newer jobs win ties."""
    scored = [(job, match_score(job=job, user=user)) for job in jobs]
    scored = [item for item in scored if item[1] > 0]
    scored.sort(key=lambda item: (item[1], item[0].id), reverse=True)
    return scored
