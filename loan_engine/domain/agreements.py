"""Loan agreement rendering"""

from datetime import date
from html import escape
from typing import List

from loan_engine.domain.models import ScheduleEntry


def format_minor(amount_minor: int, currency: str) -> str:
    """12345 USD -> 'USD 123.45'"""
    sign = "-" if amount_minor < 0 else ""
    major, minor = divmod(abs(amount_minor), 100)
    return f"{sign}{currency} {major:,}.{minor:02d}"


def format_apr(apr_bps: int) -> str:
    """1500 -> '15.00%'"""
    whole, frac = divmod(apr_bps, 100)
    return f"{whole}.{frac:02d}%"


def render_agreement(
    loan_id: str,
    lender_name: str,
    borrower_name: str,
    principal_minor: int,
    apr_bps: int,
    term_months: int,
    currency: str,
    start_date: date,
    entries: List[ScheduleEntry],
) -> str:
    """Build the HTML agreement both parties can download"""
    rows = "\n".join(
        "<tr><td>{n}</td><td>{due}</td><td>{principal}</td><td>{interest}</td><td>{total}</td></tr>".format(
            n=entry.payment_number,
            due=entry.due_date.isoformat(),
            principal=format_minor(entry.principal_component, currency),
            interest=format_minor(entry.interest_component, currency),
            total=format_minor(entry.amount, currency),
        )
        for entry in sorted(entries, key=lambda e: e.payment_number)
    )
    total_repayable = sum(entry.amount for entry in entries)

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Loan Agreement {escape(loan_id)}</title></head>
<body>
<h1>Loan Agreement</h1>
<p>Agreement reference: {escape(loan_id)}</p>
<p>Lender: {escape(lender_name)}</p>
<p>Borrower: {escape(borrower_name)}</p>
<h2>Terms</h2>
<ul>
<li>Principal: {format_minor(principal_minor, currency)}</li>
<li>Annual percentage rate: {format_apr(apr_bps)}</li>
<li>Term: {term_months} months</li>
<li>Start date: {start_date.isoformat()}</li>
<li>Total repayable: {format_minor(total_repayable, currency)}</li>
</ul>
<h2>Repayment schedule</h2>
<table>
<tr><th>#</th><th>Due date</th><th>Principal</th><th>Interest</th><th>Total</th></tr>
{rows}
</table>
</body>
</html>
"""
