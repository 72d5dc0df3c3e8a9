"""Grading scales for report cards."""

GRADE_BANDS = [
    (90, "A*", "Excellent"),
    (80, "A", "Very Good"),
    (70, "B", "Good"),
    (60, "C", "Credit"),
    (50, "D", "Pass"),
    (40, "E", "Subsidiary Pass"),
    (30, "F", "Failure"),
]
FLOOR_GRADE = ("G", "Unclassified")

FORMATIVE_WEIGHT = 0.2
SCHOOL_BASED_WEIGHT = 0.8

ECD_RATING_BANDS = [
    (90, "EXCELLENT"),
    (80, "VERY GOOD"),
    (70, "GOOD"),
    (60, "FAIR"),
    (50, "AVERAGE"),
]
ECD_FLOOR_RATING = "NEEDS IMPROVEMENT"


def grade_for_score(score):
    """Return (grade, descriptor) for a 0-100 score."""
    score = score or 0
    for minimum, grade, descriptor in GRADE_BANDS:
        if score >= minimum:
            return grade, descriptor
    return FLOOR_GRADE


def subject_total(formative, school_based):
    return round((formative or 0) * FORMATIVE_WEIGHT + (school_based or 0) * SCHOOL_BASED_WEIGHT, 2)


def ecd_rating(score):
    score = score or 0
    for minimum, label in ECD_RATING_BANDS:
        if score >= minimum:
            return label
    return ECD_FLOOR_RATING


def competition_ranks(values):
    """Rank values descending; equal values share a rank (1, 1, 3).

    ``values`` is a list of (key, value) pairs. Returns {key: rank}.
    """
    ordered = sorted(values, key=lambda kv: kv[1], reverse=True)
    ranks = {}
    prev_value = None
    prev_rank = 0
    for position, (key, value) in enumerate(ordered, start=1):
        if prev_value is not None and value == prev_value:
            ranks[key] = prev_rank
        else:
            ranks[key] = position
            prev_rank = position
        prev_value = value
    return ranks
