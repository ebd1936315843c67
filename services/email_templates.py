"""
HTML bodies for the outgoing emails, rendered from Jinja2 templates with
autoescaping so caller-supplied text can never inject markup.
"""

import os
from datetime import datetime
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

import config
from utils import french_date, french_short_date

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')

env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(['html', 'xml']),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render(template_name: str, now: Optional[datetime] = None, **context) -> str:
    now = now or datetime.now()
    context.setdefault('from_name', config.EMAIL_FROM_NAME)
    context.setdefault('year', now.year)
    return env.get_template(template_name).render(**context)


def render_report_ready(subject: str, title: str, now: Optional[datetime] = None) -> str:
    return render('report_ready.html', now=now, subject=subject, title=title,
                  date=french_short_date(now))


def render_offer_ready(subject: str, now: Optional[datetime] = None) -> str:
    return render('offer_ready.html', now=now, subject=subject, date=french_short_date(now))


def render_excel_ready(subject: str, filename: str, sheet_names: List[str],
                       now: Optional[datetime] = None) -> str:
    return render('excel_ready.html', now=now, subject=subject, filename=filename,
                  sheet_names=sheet_names, date=french_date(now, with_time=True))


def render_simple_message(subject: str, message: str, now: Optional[datetime] = None) -> str:
    return render('simple_message.html', now=now, subject=subject, message=message)


def render_support_ticket(username: str, assistant_name: str, comment: str,
                          now: Optional[datetime] = None) -> str:
    return render('support_ticket.html', now=now, username=username,
                  assistant_name=assistant_name, comment=comment,
                  timestamp=french_date(now, with_time=True))
