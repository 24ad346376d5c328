from typing import Any, Dict, Optional

from backend.src.models.chatbot import Chatbot

DEFAULT_WELCOME_MESSAGE = "Hello! How can I help you today?"
DEFAULT_TEXT_COLOR = "#1F2937"
DEFAULT_BACKGROUND_COLOR = "#FFFFFF"
DEFAULT_FONT_FAMILY = "system-ui, -apple-system, sans-serif"


def build_theme(chatbot: Chatbot, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    overrides = overrides or {}
    return {
        "primaryColor": overrides.get("primaryColor") or chatbot.get_appearance("primary_color"),
        "secondaryColor": overrides.get("secondaryColor") or chatbot.get_appearance("secondary_color"),
        "textColor": overrides.get("textColor") or DEFAULT_TEXT_COLOR,
        "backgroundColor": overrides.get("backgroundColor") or DEFAULT_BACKGROUND_COLOR,
        "borderRadius": overrides.get("borderRadius") or f"{chatbot.get_appearance('border_radius')}px",
        "fontFamily": overrides.get("fontFamily") or chatbot.get_appearance("font_family") or DEFAULT_FONT_FAMILY,
    }


def build_widget_config(chatbot: Chatbot) -> Dict[str, Any]:
    """Public configuration the embeddable widget loads on start."""
    return {
        "chatbotId": chatbot.id,
        "title": chatbot.name,
        "welcomeMessage": DEFAULT_WELCOME_MESSAGE,
        "position": chatbot.get_appearance("position"),
        "theme": build_theme(chatbot),
        "settings": {
            "maxTokens": chatbot.get_setting("max_tokens"),
            "responseDelay": chatbot.get_setting("response_delay"),
            "collectUserInfo": chatbot.get_setting("collect_user_info"),
        },
    }


def generate_embed_code(chatbot: Chatbot, server_url: str, api_prefix: str, options: Dict[str, Any]) -> str:
    theme = build_theme(chatbot, options.get("theme"))
    attributes = {
        "chatbot-id": chatbot.id,
        "position": options.get("position") or chatbot.get_appearance("position"),
        "server-url": server_url,
        "primary-color": theme["primaryColor"],
        "secondary-color": theme["secondaryColor"],
        "text-color": theme["textColor"],
        "background-color": theme["backgroundColor"],
        "border-radius": theme["borderRadius"],
        "font-family": theme["fontFamily"],
        "title": options.get("title") or chatbot.name,
        "welcome-message": options.get("welcomeMessage") or DEFAULT_WELCOME_MESSAGE,
    }
    set_attributes = "\n".join(
        f"    script.setAttribute('data-{name}', {_js_string(value)});" for name, value in attributes.items()
    )

    return f"""<!-- AI Chatbot Widget -->
<script>
  (function() {{
    var script = document.createElement('script');
    script.src = '{server_url}{api_prefix}/widget/chat-widget.js';
{set_attributes}
    document.head.appendChild(script);
  }})();
</script>"""


def _js_string(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace("'", "\\'").replace("<", "\\x3c")
    return f"'{text}'"
