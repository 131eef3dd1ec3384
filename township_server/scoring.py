from __future__ import annotations

from dataclasses import dataclass

DESIGNATED_THRESHOLD = 4


@dataclass(frozen=True)
class ScoringField:
    name: str
    label: str
    allowed: tuple[int, ...] = (0, 1)


FIELDS = (
    ScoringField("assist_none_2324", "Township Assistance (2023-2024)", (0, 2)),
    ScoringField("fire_ems_not_active", "Fire / EMS Management"),
    ScoringField("afr_2023", "Annual Finance Report - 2023"),
    ScoringField("afr_2024", "Annual Finance Report - 2024"),
    ScoringField("uploads_2024", "Monthly Uploads - 2024"),
    ScoringField("uploads_2025", "Monthly Uploads - 2025"),
    ScoringField("budget_cont_2024", "Budget Continued - 2024"),
    ScoringField("budget_cont_2025", "Budget Continued - 2025"),
    ScoringField("apps_lt_24", "Assistance Applications (fewer than 24)"),
    ScoringField("budget_under_100k", "Certified Budget less than $100k (2025)"),
    ScoringField("trustee_issue", "Trustee Ballot/Vacancy (max 1)"),
    ScoringField("board_issue", "Board Ballot/Vacancy (max 1)"),
)


class InvalidAnswer(ValueError):
    def __init__(self, field: str, value: int, allowed: tuple[int, ...]):
        super().__init__(f"{field}={value} not in {allowed}")
        self.field = field
        self.value = value
        self.allowed = allowed


def score(answers: dict[str, int]) -> dict:
    """Total the scorecard. Nothing is scored until every field is answered."""
    for f in FIELDS:
        if f.name in answers and answers[f.name] not in f.allowed:
            raise InvalidAnswer(f.name, answers[f.name], f.allowed)
    unanswered = [{"name": f.name, "label": f.label} for f in FIELDS if f.name not in answers]
    if unanswered:
        return {"score": None, "status": None, "unanswered": unanswered}
    total = sum(answers[f.name] for f in FIELDS)
    status = "Designated" if total >= DESIGNATED_THRESHOLD else "Recipient"
    return {"score": total, "status": status, "unanswered": []}
