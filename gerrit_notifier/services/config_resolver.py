"""Project configuration resolution - merge the parent chain into one policy."""

import configparser

from pydantic import ValidationError

from gerrit_notifier.models.project_config import ConfigLayer, ProjectConfig
from gerrit_notifier.services.gerrit_client import GerritClient
from gerrit_notifier.utils.errors import GerritAPIError, ProjectConfigError
from gerrit_notifier.utils.logging import get_structured_logger, timed

logger = get_structured_logger(__name__)

CONFIG_PLUGIN_NAME = "slack-integration"
CONFIG_SECTION = f'plugin "{CONFIG_PLUGIN_NAME}"'


# Escapes git-config understands inside values.
GIT_VALUE_ESCAPES = {"n": "\n", "t": "\t", "b": "\b", "\\": "\\", '"': '"'}


def decode_config_value(raw: str) -> str:
    """
    Apply git-config value rules to a raw value.

    Double quotes are removed and protect whitespace, ``#`` and ``;`` inside
    them. Backslash escapes are decoded; an unknown escape is kept as
    written so hand-edited regexes such as ``\\[WIP\\]`` survive. An
    unquoted ``#`` or ``;`` starts a comment. Unquoted trailing whitespace
    is dropped.
    """
    chars = []
    kept = 0
    quoted = False
    index = 0
    while index < len(raw):
        char = raw[index]
        index += 1
        if char == '"':
            quoted = not quoted
            kept = len(chars)
        elif char == "\\" and index < len(raw):
            escaped = raw[index]
            index += 1
            chars.append(GIT_VALUE_ESCAPES.get(escaped, "\\" + escaped))
            kept = len(chars)
        elif char in "#;" and not quoted:
            break
        else:
            chars.append(char)
            if quoted:
                kept = len(chars)
    return "".join(chars[:kept]) + "".join(chars[kept:]).rstrip()


def parse_config_layer(contents: str, project: str = "") -> ConfigLayer:
    """
    Parse the plugin section of a project.config file.

    A file without the section yields an empty layer. Bare keys (git-config
    shorthand for true) are read as "true"; other values go through
    decode_config_value.
    """
    parser = configparser.ConfigParser(
        strict=False,
        interpolation=None,
        allow_no_value=True,
        default_section="__no_defaults__",
    )
    try:
        parser.read_string(contents, source=f"{project or 'project'}.config")
    except configparser.Error as e:
        raise ProjectConfigError(f"Unparsable project.config: {e}", project=project) from e

    if not parser.has_section(CONFIG_SECTION):
        return ConfigLayer()

    raw = {
        key: "true" if value is None else decode_config_value(value.strip())
        for key, value in parser.items(CONFIG_SECTION)
    }
    try:
        return ConfigLayer.model_validate(raw)
    except ValidationError as e:
        raise ProjectConfigError(f"Invalid {CONFIG_PLUGIN_NAME} settings: {e}", project=project) from e


async def project_lineage(client: GerritClient, project: str) -> list[str]:
    """Return the project and its ancestors ordered root first."""
    chain = [project]
    current = project
    while True:
        parent = await client.get_project_parent(current)
        if not parent or parent in chain:
            break
        chain.append(parent)
        current = parent
    chain.reverse()
    return chain


@timed("resolve_project_config")
async def resolve_project_config(client: GerritClient, project: str) -> ProjectConfig:
    """
    Build the effective configuration for a project.

    Any fetch or parse failure aborts the whole resolution; partial
    configurations are never returned.
    """
    try:
        chain = await project_lineage(client, project)
        layers = []
        for name in chain:
            contents = await client.get_project_config(name)
            layers.append(parse_config_layer(contents, project=name))
    except GerritAPIError as e:
        raise ProjectConfigError(f"Failed to load config for {project}: {e}", project=project) from e

    config = ProjectConfig.merge(layers)
    logger.debug(
        "Resolved project config",
        project=project,
        lineage=chain,
        enabled=config.enabled,
        channel=config.channel
    )
    return config
