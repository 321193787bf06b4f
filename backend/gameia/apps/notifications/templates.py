"""
Transactional email templates.

Each renderer takes the template context and returns (subject, html).
Values are HTML-escaped; `app_url` falls back to PORTAL_BASE_URL.
"""

from __future__ import annotations

import os
from html import escape
from typing import Callable, Dict, Tuple

PORTAL_BASE_URL = (os.getenv("PORTAL_BASE_URL") or "http://localhost:5173").rstrip("/")

_FOOTER = (
    '<p style="color: #666; font-size: 12px; margin-top: 24px;">'
    "GAMEIA - Gamified corporate learning</p>"
)


def _button(url: str, label: str) -> str:
    return (
        f'<a href="{escape(url)}" style="display: inline-block; background: #6366f1; color: white; '
        f'padding: 12px 24px; text-decoration: none; border-radius: 8px; margin-top: 16px;">{escape(label)}</a>'
    )


def _wrap(body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        f"{body}{_FOOTER}</div>"
    )


def _name(ctx: dict) -> str:
    return escape(str(ctx.get("nickname") or "Player"))


def _url(ctx: dict) -> str:
    return str(ctx.get("app_url") or PORTAL_BASE_URL)


def _streak_reminder(ctx: dict) -> Tuple[str, str]:
    body = (
        '<h1 style="color: #f59e0b;">🔥 Keep your streak alive!</h1>'
        f"<p>Hi <strong>{_name(ctx)}</strong>!</p>"
        f"<p>You are on a <strong>{int(ctx.get('current_streak') or 0)} day</strong> streak. Don't let it reset!</p>"
        "<p>Play today to keep the sequence going and earn extra rewards.</p>"
        f"{_button(_url(ctx), 'Play now')}"
    )
    return "🔥 Your streak is at risk!", _wrap(body)


def _weekly_summary(ctx: dict) -> Tuple[str, str]:
    body = (
        '<h1 style="color: #6366f1;">📊 Your week</h1>'
        f"<p>Hi <strong>{_name(ctx)}</strong>!</p>"
        '<div style="background: #f3f4f6; padding: 20px; border-radius: 12px; margin: 20px 0;">'
        f"<p><strong>XP earned:</strong> {int(ctx.get('xp_gained') or 0)}</p>"
        f"<p><strong>Coins earned:</strong> {int(ctx.get('coins_gained') or 0)}</p>"
        f"<p><strong>Games completed:</strong> {int(ctx.get('games_played') or 0)}</p>"
        f"<p><strong>Current streak:</strong> {int(ctx.get('current_streak') or 0)} days</p>"
        "</div>"
        f"{_button(_url(ctx), 'Open dashboard')}"
    )
    return "📊 Your weekly summary is here!", _wrap(body)


def _welcome(ctx: dict) -> Tuple[str, str]:
    body = (
        '<h1 style="color: #6366f1;">🎮 Welcome to GAMEIA!</h1>'
        f"<p>Hi <strong>{_name(ctx)}</strong>!</p>"
        "<p>Your account is ready. Start your professional development journey through games.</p>"
        "<ul><li>🎯 Complete daily missions</li><li>🏆 Earn insignias and achievements</li>"
        "<li>📈 Grow your skills</li><li>🤝 Connect with colleagues</li></ul>"
        f"{_button(_url(ctx), 'Get started')}"
    )
    return "🎮 Welcome to GAMEIA!", _wrap(body)


def _achievement(ctx: dict) -> Tuple[str, str]:
    name = escape(str(ctx.get("achievement_name") or "Achievement"))
    description = escape(str(ctx.get("achievement_description") or ""))
    body = (
        '<h1 style="color: #f59e0b;">🏆 Congratulations!</h1>'
        f"<p>Hi <strong>{_name(ctx)}</strong>!</p>"
        "<p>You unlocked a new achievement:</p>"
        '<div style="background: #fef3c7; padding: 20px; border-radius: 12px; margin: 20px 0; text-align: center;">'
        f'<h2 style="margin: 0; color: #92400e;">{name}</h2>'
        f'<p style="margin: 8px 0 0 0; color: #b45309;">{description}</p></div>'
        f"{_button(_url(ctx), 'See achievements')}"
    )
    return f"🏆 New achievement: {ctx.get('achievement_name') or 'Achievement'}!", _wrap(body)


def _application_alert(ctx: dict) -> Tuple[str, str]:
    title = escape(str(ctx.get("title") or "Practical application"))
    message = escape(str(ctx.get("message") or ""))
    body = (
        f'<h1 style="color: #ef4444;">{title}</h1>'
        f"<p>Hi <strong>{_name(ctx)}</strong>!</p>"
        f"<p>{message}</p>"
        f"{_button(_url(ctx), 'Open training')}"
    )
    return str(ctx.get("title") or "Practical application"), _wrap(body)


TEMPLATES: Dict[str, Callable[[dict], Tuple[str, str]]] = {
    "streak_reminder": _streak_reminder,
    "weekly_summary": _weekly_summary,
    "welcome": _welcome,
    "achievement": _achievement,
    "application_alert": _application_alert,
}


def render(template_key: str, context: dict) -> Tuple[str, str]:
    renderer = TEMPLATES.get(template_key)
    if renderer is None:
        raise ValueError(f"Unknown email type: {template_key}")
    return renderer(context or {})
