"""
Email template registry for queued email jobs.
Templates use {variable} substitution. Missing variables render as their
{placeholder} so a bad payload is visible in the sent email instead of crashing.
"""
import logging
from html import escape
from typing import Optional

logger = logging.getLogger(__name__)

BRAND_NAME = "Wilnara Tranças"
BRAND_COLOR = "#8B5CF6"

_LAYOUT = """
<div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 520px; margin: 0 auto; padding: 40px 20px; color: #333;">
  <div style="text-align: center; margin-bottom: 32px;">
    <h1 style="margin: 0; color: {brand_color}; font-size: 22px;">{brand_name}</h1>
  </div>
  {content}
  <hr style="border: none; border-top: 1px solid #eee; margin: 32px 0;" />
  <p style="color: #bbb; font-size: 11px; text-align: center;">{brand_name} &mdash; {app_url}</p>
</div>
"""

_BUTTON = (
    '<div style="text-align: center; margin: 32px 0;">'
    '<a href="{href}" style="background: {brand_color}; color: white; padding: 12px 32px; '
    'border-radius: 10px; text-decoration: none; font-weight: 600; display: inline-block;">{label}</a>'
    "</div>"
)

_CODE_BOX = (
    '<div style="text-align: center; margin: 24px 0; padding: 20px; background: #f3f4f6; border-radius: 12px;">'
    '<div style="font-size: 32px; letter-spacing: 8px; font-weight: 700;">{code}</div>'
    '<div style="color: #999; font-size: 13px; margin-top: 8px;">Este código expira em {expires_minutes} minutos</div>'
    "</div>"
)

TEMPLATES = {
    "password_reset": {
        "html": (
            "<p>Olá, {user_name}!</p>"
            "<p>Recebemos uma solicitação para redefinir a senha da sua conta. "
            "Use o código abaixo para continuar.</p>"
            + _CODE_BOX
            + _BUTTON.replace("{href}", "{app_url}/reset-password/verify").replace("{label}", "Redefinir Senha")
            + "<p style=\"color: #999; font-size: 13px;\">Se não pediu esta alteração, pode ignorar este email.</p>"
        ),
        "text": (
            "Olá, {user_name}!\n\n"
            "Use o código {code} para redefinir a sua senha: {app_url}/reset-password/verify\n"
            "O código expira em {expires_minutes} minutos.\n\n-- {brand_name}"
        ),
        "defaults": {"expires_minutes": 15},
    },
    "email_verification": {
        "html": (
            "<p>Bem-vindo(a), {user_name}!</p>"
            "<p>Para completar o seu cadastro precisamos verificar o seu endereço de email.</p>"
            + _CODE_BOX
            + _BUTTON.replace("{href}", "{app_url}/verify-email").replace("{label}", "Verificar Email")
        ),
        "text": (
            "Bem-vindo(a), {user_name}!\n\n"
            "O seu código de verificação é {code}: {app_url}/verify-email\n"
            "O código expira em {expires_minutes} minutos.\n\n-- {brand_name}"
        ),
        "defaults": {"expires_minutes": 30},
    },
    "welcome": {
        "html": (
            "<p>Seja bem-vindo(a), {user_name}!</p>"
            "<p>A sua conta foi criada com sucesso. Agora pode explorar os nossos produtos, "
            "encontrar trancistas na sua região e fazer os seus agendamentos.</p>"
            + _BUTTON.replace("{href}", "{app_url}").replace("{label}", "Começar Agora")
        ),
        "text": (
            "Seja bem-vindo(a), {user_name}!\n\n"
            "A sua conta foi criada com sucesso. Comece em {app_url}\n\n-- {brand_name}"
        ),
        "defaults": {},
    },
    "order_confirmation": {
        "html": (
            "<p>Olá, {user_name}!</p>"
            "<p>O seu pedido <strong>{order_number}</strong> foi confirmado. "
            "Total: <strong>{order_total}</strong>.</p>"
            "<p>Receberá em breve mais informações sobre o envio.</p>"
            + _BUTTON.replace("{href}", "{app_url}/orders").replace("{label}", "Ver Meus Pedidos")
        ),
        "text": (
            "Olá, {user_name}!\n\n"
            "O seu pedido {order_number} foi confirmado. Total: {order_total}.\n"
            "Acompanhe em {app_url}/orders\n\n-- {brand_name}"
        ),
        "defaults": {},
    },
    "booking_confirmation": {
        "html": (
            "<p>Olá, {user_name}!</p>"
            "<p>O seu agendamento de <strong>{service_name}</strong> com "
            "<strong>{braider_name}</strong> está confirmado para "
            "<strong>{booking_date}</strong> às <strong>{booking_time}</strong>.</p>"
            "<p>Local: {location}</p>"
            + _BUTTON.replace("{href}", "{app_url}/bookings").replace("{label}", "Ver Agendamento")
        ),
        "text": (
            "Olá, {user_name}!\n\n"
            "Agendamento confirmado: {service_name} com {braider_name}, "
            "{booking_date} às {booking_time}.\nLocal: {location}\n\n-- {brand_name}"
        ),
        "defaults": {"location": "a combinar"},
    },
    "booking_cancelled": {
        "html": (
            "<p>Olá, {user_name}!</p>"
            "<p>O agendamento de <strong>{service_name}</strong> em "
            "<strong>{booking_date}</strong> foi cancelado.</p>"
            "<p>Motivo: {reason}</p>"
            + _BUTTON.replace("{href}", "{app_url}/braiders").replace("{label}", "Agendar Novamente")
        ),
        "text": (
            "Olá, {user_name}!\n\n"
            "O agendamento de {service_name} em {booking_date} foi cancelado.\n"
            "Motivo: {reason}\n\n-- {brand_name}"
        ),
        "defaults": {"reason": "não informado"},
    },
}


class SafeDict(dict):
    """Dict that returns '{key}' for missing keys instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class UnknownTemplateError(KeyError):
    """Raised when an email job names a template that is not registered."""


def render_email(
    template_key: str,
    variables: Optional[dict] = None,
    app_url: str = "",
) -> tuple[str, str]:
    """
    Render an email template.

    Returns: (html, text)
    Raises: UnknownTemplateError if the template is not registered.
    """
    template = TEMPLATES.get(template_key)
    if template is None:
        raise UnknownTemplateError(template_key)

    values = SafeDict(
        brand_name=BRAND_NAME,
        brand_color=BRAND_COLOR,
        app_url=app_url.rstrip("/"),
    )
    values.update(template["defaults"])
    values.update(variables or {})
    html_values = SafeDict(
        {k: escape(v) if isinstance(v, str) else v for k, v in values.items()}
    )

    try:
        content = template["html"].format_map(html_values)
        html = _LAYOUT.format_map(SafeDict(html_values, content=content))
        text = template["text"].format_map(values)
    except (ValueError, IndexError, AttributeError) as e:
        # Malformed format spec in a variable value - fall back to raw templates
        logger.debug("Email template rendering failed for %s: %s", template_key, str(e))
        return template["html"], template["text"]

    return html, text
