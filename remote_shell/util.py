import os
import sys
from typing import Any, Dict, Optional

import jinja2


def read_script(path: Optional[str]) -> str:
    """Read a script from a file, or from stdin when path is ``-``.

    Example:
        >>> read_script("deploy.sh")
        'set -e\\n./deploy\\n'
    """
    if path is None or path == "-":
        return sys.stdin.read()
    with open(os.path.expanduser(path)) as f:
        return f.read()


def render_script(template: str, variables: Dict[str, Any]) -> str:
    """Render a script as a Jinja2 template.

    Host variables from the inventory are the usual template context.
    Undefined variables raise instead of rendering as empty strings, since
    an empty value in a shell script is rarely what was meant.

    Raises:
        jinja2.TemplateError: If the template is malformed or refers to an
            undefined variable.

    Example:
        >>> render_script("echo {{ role }}", {"role": "web"})
        'echo web'
    """
    environment = jinja2.Environment(undefined=jinja2.StrictUndefined, keep_trailing_newline=True)
    return environment.from_string(template).render(**variables)
