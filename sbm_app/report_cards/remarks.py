"""
Automated report card remarks, chosen from score bands.
"""

DEFAULT_BANDS = {
    "excellent": 90,
    "very_good": 80,
    "good": 70,
    "credit": 60,
    "pass": 50,
    "subsidiary": 40,
}

_CLASS_TEACHER = [
    ("excellent", "{name} has demonstrated outstanding academic excellence this term. A truly remarkable performance that sets a benchmark for the entire class. Consistently engaged in class and produces high-quality work. Please maintain this exceptional standard."),
    ("very_good", "{name} has performed exceptionally well this term with strong results across most subjects. Shows great dedication, active participation, and clear understanding of concepts. Encouraged to maintain this commendable standard and strive for even higher achievement."),
    ("good", "{name} has shown commendable effort and delivered good results this term. Demonstrates solid understanding of most subjects. With continued focus, consistent attendance, and extra effort in weaker areas, even higher achievement is within reach."),
    ("credit", "{name} has achieved reasonable results this term but there remains room for improvement in several subjects. Encouraged to seek extra help in challenging areas, improve class participation, and develop consistent study habits. Parents are urged to provide support at home."),
    ("pass", "{name} has achieved a pass but needs to work significantly harder in several subjects. More consistent study habits, regular class attendance, and improved focus are essential. Parents/guardians are encouraged to monitor homework closely and provide additional academic support."),
    ("subsidiary", "{name} is performing below the expected standard and needs urgent intervention. A significant improvement plan is required. Parents/guardians should consider engaging a tutor for extra lessons. Close collaboration between home and school is strongly recommended."),
]
_CLASS_TEACHER_FLOOR = "{name} is struggling significantly and requires immediate intervention. Academic support through remedial classes, tutoring, and close supervision is essential. An urgent meeting with parents/guardians is recommended to discuss a structured improvement plan."

_HEAD_TEACHER = [
    ("very_good", "Congratulations to {name} on achieving excellent academic results this term. The school is proud of this outstanding performance. We encourage continued dedication, hard work, and positive attitude towards learning. You are a role model for other students."),
    ("credit", "{name} has performed well this term, demonstrating good commitment to academic work. We commend the effort shown and encourage more consistent focus to achieve even better results in the next term. The school remains committed to supporting your academic journey."),
    ("pass", "{name}'s performance this term is satisfactory but requires improvement. We note that with increased effort and focus, significant progress is possible. We urge you to work closely with your class teacher and parents to strengthen weaker areas. The school is here to support you."),
    ("subsidiary", "{name}'s academic performance this term is below the expected standard and requires urgent attention. We request a meeting with the parents/guardians to discuss support strategies and create an improvement plan. The school will provide necessary resources to help."),
]
_HEAD_TEACHER_FLOOR = "{name}'s academic performance is a serious cause for concern. We strongly recommend an urgent meeting with parents/guardians to discuss this situation and develop a comprehensive intervention plan. The school is committed to helping but requires parental involvement."

_SUBJECT = [
    ("excellent", "Excellent performance in {subject}. Outstanding understanding and consistent high-quality work."),
    ("very_good", "Very good performance in {subject}. Strong grasp of concepts with reliable consistency."),
    ("good", "Good performance in {subject}. Solid understanding with room for deeper engagement."),
    ("credit", "Fair performance in {subject}. Satisfactory work but would benefit from more effort."),
    ("pass", "Acceptable in {subject} but improvement is needed. More focused study and practice recommended."),
    ("subsidiary", "Below satisfactory performance in {subject}. Urgent attention and additional support required."),
]
_SUBJECT_FLOOR = "Poor performance in {subject}. Significant improvement and intervention needed immediately."

DISCIPLINE_REMARKS = {
    "excellent": "Outstanding conduct and discipline. Exemplary behavior that deserves commendation.",
    "well disciplined": "Well disciplined and maintains excellent conduct throughout the term.",
    "good conduct": "Good conduct with occasional minor issues. Generally maintains discipline well.",
    "fair": "Fair conduct with some disciplinary concerns. Improvement in behavior is needed.",
    "needs guidance": "Needs guidance and closer monitoring. Disciplinary issues have been noted and require parental involvement.",
    "requires close supervision": "Requires close supervision due to repeated disciplinary incidents. Parents urgently needed to address behavior.",
    "needs improvement": "Behavior needs significant improvement. Intervention and support are essential.",
}
DISCIPLINE_DEFAULT = "Conduct assessment pending review by class teacher."

PERFORMANCE_LEVELS = [
    ("excellent", "Excellent", "Outstanding academic performance"),
    ("very_good", "Very Good", "Strong academic performance"),
    ("good", "Good", "Satisfactory academic performance"),
    ("credit", "Credit", "Average academic performance"),
    ("pass", "Pass", "Below average academic performance"),
    ("subsidiary", "Subsidiary", "Well below average performance"),
]


def _first_name(student_name):
    parts = (student_name or "").split()
    return parts[0] if parts else "The student"


def _pick(score, table, floor, bands):
    bands = bands or DEFAULT_BANDS
    for band, text in table:
        if score >= bands[band]:
            return text
    return floor


def class_teacher_remark(average, student_name, bands=None):
    return _pick(average, _CLASS_TEACHER, _CLASS_TEACHER_FLOOR, bands).format(name=_first_name(student_name))


def head_teacher_remark(average, student_name, bands=None):
    return _pick(average, _HEAD_TEACHER, _HEAD_TEACHER_FLOOR, bands).format(name=_first_name(student_name))


def subject_remark(score, subject_name, bands=None):
    return _pick(score, _SUBJECT, _SUBJECT_FLOOR, bands).format(subject=subject_name)


def discipline_remark(rating):
    return DISCIPLINE_REMARKS.get((rating or "").strip().lower(), DISCIPLINE_DEFAULT)


def attendance_remark(days_present, total_days):
    if not total_days:
        return "Attendance record pending."
    pct = days_present / total_days * 100
    if pct >= 95:
        return f"Excellent attendance ({pct:.1f}%). Regular attendance is commendable and supports academic success."
    if pct >= 90:
        return f"Good attendance ({pct:.1f}%). Maintain this positive trend as regular attendance is crucial for learning."
    if pct >= 80:
        return f"Attendance is fair ({pct:.1f}%). Efforts should be made to improve attendance further."
    if pct >= 70:
        return (f"Attendance is below satisfactory ({pct:.1f}%). Regular attendance is important for academic success. "
                "Parents should encourage consistent attendance.")
    return f"Attendance is poor ({pct:.1f}%). This significantly impacts learning. Urgent action is required to improve attendance."


def performance_level(average, bands=None):
    bands = bands or DEFAULT_BANDS
    for band, level, description in PERFORMANCE_LEVELS:
        if average >= bands[band]:
            return {"level": level, "description": description}
    return {"level": "Failure", "description": "Serious academic performance issues"}
