"""HTML email templates for the run digest."""

from datetime import datetime
from html import escape
from typing import Optional

from job_hunter.models import StoredJob
from job_hunter.storage.ledger import RunStats

STYLE = """
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            background-color: #f5f5f5;
            margin: 0;
            padding: 20px;
            color: #333;
        }
        .container {
            max-width: 700px;
            margin: 0 auto;
            background: #fff;
            border-radius: 8px;
            overflow: hidden;
            box-shadow: 0 2px 8px rgba(0,0,0,0.1);
        }
        .header {
            background: #1a73e8;
            color: white;
            padding: 24px;
            text-align: center;
        }
        .header h1 { margin: 0; font-size: 22px; font-weight: 600; }
        .header p { margin: 8px 0 0; opacity: 0.9; font-size: 14px; }
        .stats { display: flex; gap: 8px; padding: 16px 24px; border-bottom: 1px solid #eee; }
        .stat { flex: 1; text-align: center; }
        .stat-value { font-size: 20px; font-weight: 700; }
        .stat-label { font-size: 11px; color: #777; }
        .content { padding: 24px; }
        .job-card {
            border: 1px solid #e0e0e0;
            border-radius: 8px;
            padding: 16px;
            margin-bottom: 16px;
        }
        .job-header { display: flex; justify-content: space-between; align-items: flex-start; }
        .job-title a { color: #1a73e8; text-decoration: none; font-size: 16px; font-weight: 600; }
        .score-badge {
            padding: 4px 10px;
            border-radius: 12px;
            font-size: 12px;
            font-weight: 600;
            white-space: nowrap;
        }
        .score-high { background: #e8f5e9; color: #2e7d32; }
        .score-medium { background: #fff3e0; color: #ef6c00; }
        .job-company { font-size: 14px; color: #555; margin: 4px 0; }
        .job-meta { font-size: 13px; color: #777; margin: 4px 0; }
        .job-summary { font-size: 13px; color: #333; margin-top: 8px; }
        .job-reason { font-size: 13px; color: #666; margin-top: 8px; font-style: italic; }
        .empty { color: #777; text-align: center; padding: 32px 0; }
        .footer {
            background: #fafafa;
            padding: 16px 24px;
            text-align: center;
            font-size: 12px;
            color: #999;
            border-top: 1px solid #eee;
        }
"""


def render_digest_email(
    jobs: list[StoredJob], stats: RunStats, now: Optional[datetime] = None
) -> tuple[str, str]:
    """Render the run digest with every unseen strong match.

    Returns (subject, html_body).
    """
    date_str = (now or datetime.now()).strftime("%A, %B %d, %Y")
    if jobs:
        plural = "es" if len(jobs) != 1 else ""
        subject = f"{len(jobs)} new job match{plural} - {date_str}"
        job_rows = "\n".join(_render_job_row(job, i + 1) for i, job in enumerate(jobs))
    else:
        subject = f"No new matches today - {date_str}"
        job_rows = '<p class="empty">No new strong matches today.</p>'

    stat_cells = "".join([
        _stat("Fetched", stats.jobs_fetched, "#6b7280"),
        _stat("Strong Match", stats.jobs_strong_match, "#059669"),
        _stat("Weak Match", stats.jobs_weak_match, "#d97706"),
        _stat("No Match", stats.jobs_no_match, "#dc2626"),
        _stat("Duplicates", stats.jobs_duplicate, "#7c3aed"),
    ])

    html = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>{STYLE}</style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Job Hunter Digest</h1>
            <p>{date_str}</p>
        </div>
        <div class="stats">{stat_cells}</div>
        <div class="content">
            {job_rows}
        </div>
        <div class="footer">
            Sent by Job Hunter | Automated job matching
        </div>
    </div>
</body>
</html>"""

    return subject, html


def _stat(label: str, value: int, color: str) -> str:
    return (
        f'<div class="stat"><div class="stat-value" style="color:{color};">{value}</div>'
        f'<div class="stat-label">{label}</div></div>'
    )


def _render_job_row(job: StoredJob, rank: int) -> str:
    """Render a single job card."""
    score_class = "score-high" if job.ai_score >= 85 else "score-medium"

    meta_parts = []
    if job.location:
        meta_parts.append(escape(job.location))
    if job.work_mode:
        meta_parts.append(escape(job.work_mode.capitalize()))
    meta_line = " &middot; ".join(meta_parts)

    summary_html = ""
    if job.ai_summary:
        summary_html = f'<div class="job-summary">{escape(job.ai_summary)}</div>'

    reason_html = ""
    if job.ai_rationale:
        reason_html = f'<div class="job-reason">{escape(job.ai_rationale)}</div>'

    link = escape(job.apply_url or job.url or "#", quote=True)

    return f"""
        <div class="job-card">
            <div class="job-header">
                <div class="job-title">
                    <span style="color:#999;font-size:13px;margin-right:8px;">#{rank}</span>
                    <a href="{link}">{escape(job.title)}</a>
                </div>
                <span class="score-badge {score_class}">{job.ai_score}%</span>
            </div>
            <div class="job-company">{escape(job.company)}</div>
            <div class="job-meta">{meta_line}</div>
            {summary_html}
            {reason_html}
        </div>"""


def render_test_email() -> tuple[str, str]:
    """Render a test email to verify the email configuration."""
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    subject = f"Job Hunter - Test Email ({now})"
    html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: sans-serif; padding: 20px;">
    <h2>Job Hunter - Test Email</h2>
    <p>This is a test email from Job Hunter.</p>
    <p>If you received this, your email configuration is working correctly.</p>
    <p style="color: #999; font-size: 12px;">Sent at: {now}</p>
</body>
</html>"""
    return subject, html
