from flask import render_template, request, redirect, url_for, flash, current_app, Response
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from . import report_cards_bp
from .. import db, csrf_required
from ..decorators import role_required, ACADEMIC_STAFF, TEACHING_STAFF
from ..errors import ServiceError
from ..models import ReportCard, AcademicTerm, SchoolClass, LearningArea
from ..tenancy import current_tenant_id, get_tenant_row, get_tenant_row_or_404, parse_float, parse_int
from ..academics.services import active_classes, active_subjects, tenant_terms
from ..exams.services import current_term
from . import services, remarks
from .grading import GRADE_BANDS


def _selection(tid):
    term_id = parse_int(request.values.get("term_id"))
    term = get_tenant_row(AcademicTerm, term_id, tid) if term_id else current_term(tid)
    class_id = parse_int(request.values.get("class_id"))
    school_class = get_tenant_row(SchoolClass, class_id, tid) if class_id else None
    return term, school_class


def _learning_areas(tid):
    return db.session.execute(
        select(LearningArea).filter_by(tenant_id_fk=tid, is_active=True).order_by(LearningArea.display_order, LearningArea.name)
    ).scalars().all()


def _back(term, school_class):
    return redirect(url_for(
        "report_cards.index",
        term_id=term.term_id if term else None,
        class_id=school_class.class_id if school_class else None,
    ))


@report_cards_bp.route("/")
@login_required
@role_required(*TEACHING_STAFF)
def index():
    tid = current_tenant_id()
    term, school_class = _selection(tid)
    cards = services.cards_for(tid, term.term_id, school_class.class_id if school_class else None) if term else []
    averages = services.class_subject_averages(tid, term.term_id, school_class.class_id) if term and school_class else []
    return render_template(
        "report_cards/index.html",
        terms=tenant_terms(tid),
        classes=active_classes(tid),
        term=term,
        school_class=school_class,
        cards=cards,
        subject_averages=averages,
    )


@report_cards_bp.route("/generate", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def generate():
    tid = current_tenant_id()
    term, school_class = _selection(tid)
    try:
        ok, msg, count = services.generate_report_cards(tid, term, school_class, created_by=current_user.user_id)
        if ok:
            db.session.commit()
        flash(msg, "success" if ok else "danger")
        if count:
            current_app.logger.info("Generated %s report cards term=%s class=%s", count, term.term_id, school_class.class_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Report card generation failed")
        flash("Report cards could not be generated. Please try again.", "danger")
    return _back(term, school_class)


@report_cards_bp.route("/rank", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def rank():
    tid = current_tenant_id()
    term, school_class = _selection(tid)
    if term is None:
        flash("Select a term.", "danger")
        return _back(term, school_class)
    ok, msg, _count = services.calculate_class_ranks(tid, term, school_class.class_id if school_class else None)
    if ok:
        db.session.commit()
    flash(msg, "success" if ok else "warning")
    return _back(term, school_class)


@report_cards_bp.route("/<int:card_id>", methods=["GET", "POST"])
@login_required
@role_required(*TEACHING_STAFF)
@csrf_required
def edit(card_id):
    tid = current_tenant_id()
    card = get_tenant_row_or_404(ReportCard, card_id)
    is_ecd = services.class_is_ecd(card.class_id_fk)

    if request.method == "POST":
        try:
            if is_ecd:
                scores = {}
                for area in _learning_areas(tid):
                    raw = request.form.get(f"score_{area.area_id}")
                    if raw is not None:
                        scores[area.area_id] = (parse_float(raw, 0.0), request.form.get(f"remark_{area.area_id}"))
                services.save_ecd_ratings(card, scores)
            else:
                rows = []
                for subject in active_subjects(tid):
                    sid = subject.subject_id
                    if f"formative_{sid}" not in request.form and f"school_based_{sid}" not in request.form:
                        continue
                    rows.append({
                        "subject_id": sid,
                        "formative": parse_float(request.form.get(f"formative_{sid}"), 0.0),
                        "school_based": parse_float(request.form.get(f"school_based_{sid}"), 0.0),
                        "teacher_initials": request.form.get(f"initials_{sid}"),
                        "subject_remark": request.form.get(f"remark_{sid}"),
                    })
                services.save_report_card_scores(card, rows)
            for field in ("class_teacher_comment", "head_teacher_comment", "conduct", "discipline_remark"):
                if field in request.form:
                    setattr(card, field, (request.form.get(field) or "").strip() or None)
            db.session.commit()
            flash("Report card saved.", "success")
            return redirect(url_for("report_cards.edit", card_id=card.report_card_id))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Saving report card %s failed", card_id)
            flash("Report card could not be saved. Please try again.", "danger")

    return render_template(
        "report_cards/edit.html",
        card=card,
        is_ecd=is_ecd,
        subjects=active_subjects(tid),
        areas=_learning_areas(tid) if is_ecd else [],
        scores={s.subject_id_fk: s for s in card.scores},
        ratings={r.area_id_fk: r for r in card.ratings},
    )


@report_cards_bp.route("/<int:card_id>/auto-remarks", methods=["POST"])
@login_required
@role_required(*TEACHING_STAFF)
@csrf_required
def auto_remarks(card_id):
    card = get_tenant_row_or_404(ReportCard, card_id)
    services.apply_auto_remarks(card, overwrite=request.form.get("overwrite") == "on")
    db.session.commit()
    flash("Remarks filled in.", "success")
    return redirect(url_for("report_cards.edit", card_id=card_id))


@report_cards_bp.route("/<int:card_id>/publish", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def publish(card_id):
    card = get_tenant_row_or_404(ReportCard, card_id)
    publish_it = request.form.get("action", "publish") != "unpublish"
    try:
        services.set_published(card, publish_it)
        db.session.commit()
        flash("Report card published." if publish_it else "Report card moved back to draft.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(url_for("report_cards.edit", card_id=card_id))


def _render_card(card):
    return render_template(
        "report_cards/print.html",
        card=card,
        is_ecd=services.class_is_ecd(card.class_id_fk),
        attendance_note=remarks.attendance_remark(card.days_present, card.total_school_days),
        performance=remarks.performance_level(card.average_score or 0),
        grade_bands=GRADE_BANDS,
    )


@report_cards_bp.route("/<int:card_id>/print")
@login_required
@role_required(*TEACHING_STAFF)
def print_card(card_id):
    card = get_tenant_row_or_404(ReportCard, card_id)
    return _render_card(card)


@report_cards_bp.route("/export")
@login_required
@role_required(*ACADEMIC_STAFF)
def export_zip():
    tid = current_tenant_id()
    term, school_class = _selection(tid)
    if term is None:
        flash("Select a term to export.", "danger")
        return redirect(url_for("report_cards.index"))
    cards = services.cards_for(tid, term.term_id, school_class.class_id if school_class else None)
    if not cards:
        flash("No report cards to export.", "warning")
        return _back(term, school_class)
    buf, filename = services.export_report_cards_zip(cards, term, _render_card)
    current_app.logger.info("Exported %s report cards for term %s", len(cards), term.term_id)
    return Response(buf.getvalue(), mimetype="application/zip", headers={
        "Content-Disposition": f"attachment; filename={filename}"
    })
