"""Environment variable references per source language."""

from __future__ import annotations

from ghostguard.detect.lines import LineIndex, decode, encode_text
from ghostguard.detect.models import Language, SecretType

_REFERENCE_TEMPLATES: dict[Language, str] = {
    Language.PYTHON: 'os.environ.get("{name}")',
    Language.JAVASCRIPT: "process.env.{name}",
    Language.TYPESCRIPT: "process.env.{name}",
    Language.GO: 'os.Getenv("{name}")',
    Language.RUST: 'std::env::var("{name}").unwrap_or_default()',
    Language.JAVA: 'System.getenv("{name}")',
    Language.RUBY: 'ENV["{name}"]',
    Language.PHP: "getenv('{name}')",
    Language.CSHARP: 'Environment.GetEnvironmentVariable("{name}")',
    Language.SHELL: '"${{{name}}}"',
}
_PLACEHOLDER_TEMPLATE = "${{{name}}}"

_QUOTE_BYTES = (b'"', b"'", b"`")


def default_env_var(secret_type: SecretType) -> str:
    return secret_type.value.upper()


def render_reference(env_var: str, language: Language) -> str:
    """Expression that reads ``env_var`` at runtime in ``language``."""
    template = _REFERENCE_TEMPLATES.get(language, _PLACEHOLDER_TEMPLATE)
    return template.format(name=env_var)


def consumes_quotes(language: Language) -> bool:
    """Whether the reference replaces the string literal, quotes included.

    Data formats (JSON, YAML, .env, ...) keep their quotes and get a
    ``${NAME}`` placeholder inside them.
    """
    return language in _REFERENCE_TEMPLATES


def enclosing_quote(content: bytes, byte_start: int, byte_end: int) -> bytes:
    """The quote character wrapping [start, end) exactly, or b''."""
    if byte_start <= 0 or byte_end >= len(content):
        return b""
    before = content[byte_start - 1 : byte_start]
    after = content[byte_end : byte_end + 1]
    if before == after and before in _QUOTE_BYTES:
        return before
    return b""


def substitution_quote(
    content: bytes,
    byte_start: int,
    byte_end: int,
    language: Language,
) -> bytes:
    if not consumes_quotes(language):
        return b""
    return enclosing_quote(content, byte_start, byte_end)


def render_preview(
    index: LineIndex,
    byte_start: int,
    byte_end: int,
    env_var: str,
    language: Language,
) -> str:
    """The matched line(s) with the secret replaced by its reference."""
    line_start, line_end = index.span(byte_start, byte_end)
    region_start, _ = index.line_bounds(line_start)
    _, region_end = index.line_bounds(line_end)

    quote = substitution_quote(index.content, byte_start, byte_end, language)
    cut_start = byte_start - len(quote)
    cut_end = byte_end + len(quote)
    replaced = (
        index.content[region_start:cut_start]
        + encode_text(render_reference(env_var, language))
        + index.content[cut_end:region_end]
    )
    return decode(replaced).replace("\r\n", "\n")
