"""Boot-configuration payload: fill a cloud-config template and base64 it.

The workflow never looks inside the result; it is forwarded verbatim to the
control plane at creation time.
"""

import base64
from pathlib import Path


def render_template(text, replacements):
    """Replace ``_KEY_PLACEHOLDER_`` tokens with values from *replacements*."""
    for key, value in replacements.items():
        text = text.replace(f"_{key}_PLACEHOLDER_", value)
    return text


def embed_file(path):
    """Base64 content of *path* on one line, for embedding in cloud-config."""
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


def encode_user_data(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def build_user_data(template_path, label, embeds=None, project_name="ai-quickstart"):
    """Render the cloud-config template and return the encoded user-data blob.

    Args:
        template_path: cloud-config template file.
        label: instance label; also the progress relay topic the instance publishes to.
        embeds: mapping of placeholder key -> file path, e.g.
            ``{"INSTALL_SH_BASE64_CONTENT": "template/install.sh"}``.
    """
    text = Path(template_path).read_text()
    replacements = {"PROJECT_NAME": project_name, "INSTANCE_LABEL": label}
    for key, path in (embeds or {}).items():
        replacements[key] = embed_file(path)
    return encode_user_data(render_template(text, replacements))
