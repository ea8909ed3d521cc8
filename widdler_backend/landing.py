from __future__ import annotations

from jinja2 import Environment


_env = Environment(autoescape=True)

LANDING_TEMPLATE = _env.from_string(
    """
<h1>Hello{% if user %} {{ user }}{% endif %}! Welcome to widdler!</h1>

<p>To create a new TiddlyWiki html file, simply append an html file name to the URL in the address bar!</p>

<h3>For example:</h3>

<a href="{{ url }}">{{ url }}</a>

<p>This will create a new wiki called "<b>wiki.html</b>"</p>

<p>After creating a wiki, this message will be replaced by a list of your wiki files.</p>
"""
)


def render_landing(user: str, url: str) -> str:
    """Render the first-run page for a tenant with an empty directory."""
    return LANDING_TEMPLATE.render(user=user, url=url)
