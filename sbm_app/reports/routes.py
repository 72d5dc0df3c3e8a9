from flask import render_template, request, session, Response
from flask_login import login_required, current_user

from . import reports_bp
from .. import cache
from ..decorators import role_required, FINANCE_STAFF
from ..tenancy import current_tenant_id, parse_date
from . import services


def _report_cache_key():
    return f"reports_{getattr(current_user, 'tenant_id_fk', 'none')}_{request.full_path}"


def _period():
    start = parse_date(request.args.get("start"))
    end = parse_date(request.args.get("end"))
    if start and end and end < start:
        start, end = end, start
    return start, end


@reports_bp.route("/financial")
@login_required
@role_required(*FINANCE_STAFF)
@cache.cached(timeout=60, key_prefix=_report_cache_key, unless=lambda: session.get("_flashes"))
def financial():
    tid = current_tenant_id()
    start, end = _period()
    return render_template("reports/financial.html", sheet=services.balance_sheet(tid, start, end),
                           start=start, end=end)


@reports_bp.route("/financial/print")
@login_required
@role_required(*FINANCE_STAFF)
def print_financial():
    tid = current_tenant_id()
    start, end = _period()
    return render_template("reports/print.html", sheet=services.balance_sheet(tid, start, end),
                           start=start, end=end)


@reports_bp.route("/financial/export.xlsx")
@login_required
@role_required(*FINANCE_STAFF)
def export_financial():
    tid = current_tenant_id()
    start, end = _period()
    tenant_name = current_user.tenant.tenant_name if current_user.tenant else "Financial Report"
    out = services.financial_workbook(tenant_name, services.balance_sheet(tid, start, end))
    return Response(out.read(), mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", headers={
        "Content-Disposition": "attachment; filename=financial_report.xlsx"
    })
